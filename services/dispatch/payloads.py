"""Transport payloads keyed by notification category.

Push payloads are consumed by the service worker in the web client, which
reacts to a fixed action vocabulary (start-routine, snooze, complete-now,
dismiss, view-feedback, view-product, open). Field names in the push payload
are part of that contract and must not change.

Every table below is keyed by NotificationCategory and checked for
completeness at import time, so adding a category without its payload
definition fails on startup instead of falling through to a default.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from services.decision_engine.NotificationCategory import NotificationCategory

logger = logging.getLogger(__name__)

DEFAULT_ICON = '/favicon.ico'

NOTIFICATION_ICONS = {
    'default': DEFAULT_ICON,
    'routine': DEFAULT_ICON,
    'streak': DEFAULT_ICON,
    'feedback': DEFAULT_ICON,
    'product': DEFAULT_ICON,
}

ROUTINE_URL = '/?view=routine'
PROGRESS_URL = '/?view=progress'
PRODUCTS_URL = '/?view=products'
CHALLENGES_URL = '/?view=challenges'
APPOINTMENTS_URL = '/?view=appointments'
HOME_URL = '/'


@dataclass(frozen=True)
class PushAction:
    action: str
    title: str

    def to_dict(self) -> Dict[str, str]:
        return {'action': self.action, 'title': self.title}


START_ROUTINE = PushAction('start-routine', 'Start Routine')
SNOOZE = PushAction('snooze', 'Snooze 30min')
COMPLETE_NOW = PushAction('complete-now', 'Complete Now')
DISMISS = PushAction('dismiss', 'Dismiss')
VIEW_FEEDBACK = PushAction('view-feedback', 'View Feedback')
VIEW_PRODUCT = PushAction('view-product', 'View Product')
OPEN = PushAction('open', 'Open App')


@dataclass(frozen=True)
class PushStyle:
    icon_key: str
    tag: str
    require_interaction: bool
    vibrate: Tuple[int, ...]
    actions: Tuple[PushAction, ...]
    url: str


STANDARD_VIBRATION = (200, 100, 200)
URGENT_VIBRATION = (200, 100, 200, 100, 200)
SIMPLE_VIBRATION = (200,)

PUSH_STYLES: Dict[NotificationCategory, PushStyle] = {
    NotificationCategory.AM_REMINDER: PushStyle(
        'routine', 'am-reminder', False, STANDARD_VIBRATION, (START_ROUTINE, SNOOZE), ROUTINE_URL
    ),
    NotificationCategory.PM_REMINDER: PushStyle(
        'routine', 'pm-reminder', False, STANDARD_VIBRATION, (START_ROUTINE, SNOOZE), ROUTINE_URL
    ),
    NotificationCategory.STREAK_WARNING: PushStyle(
        'streak', 'streak-warning', True, URGENT_VIBRATION, (COMPLETE_NOW, DISMISS), ROUTINE_URL
    ),
    NotificationCategory.FEEDBACK: PushStyle(
        'feedback', 'feedback-notification', False, SIMPLE_VIBRATION, (VIEW_FEEDBACK, DISMISS), PROGRESS_URL
    ),
    NotificationCategory.PRODUCT_RECOMMENDATION: PushStyle(
        'product', 'product-recommendation', False, SIMPLE_VIBRATION, (VIEW_PRODUCT, DISMISS), PRODUCTS_URL
    ),
    NotificationCategory.CHALLENGE: PushStyle(
        'default', 'challenge-update', False, SIMPLE_VIBRATION, (OPEN, DISMISS), CHALLENGES_URL
    ),
    NotificationCategory.APPOINTMENT_REMINDER: PushStyle(
        'default', 'appointment-reminder', False, SIMPLE_VIBRATION, (OPEN, DISMISS), APPOINTMENTS_URL
    ),
}

# ClientNotification.type for the notification-center row
IN_APP_TYPES: Dict[NotificationCategory, str] = {
    NotificationCategory.AM_REMINDER: 'reminder',
    NotificationCategory.PM_REMINDER: 'reminder',
    NotificationCategory.STREAK_WARNING: 'warning',
    NotificationCategory.FEEDBACK: 'message',
    NotificationCategory.PRODUCT_RECOMMENDATION: 'info',
    NotificationCategory.CHALLENGE: 'success',
    NotificationCategory.APPOINTMENT_REMINDER: 'reminder',
}

ACTION_ROUTES: Dict[str, str] = {
    START_ROUTINE.action: ROUTINE_URL,
    COMPLETE_NOW.action: ROUTINE_URL,
    VIEW_FEEDBACK.action: PROGRESS_URL,
    VIEW_PRODUCT.action: PRODUCTS_URL,
}


@dataclass
class NotificationContent:
    title: str
    body: str
    url: str
    tag: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def _routine_reminder(period: str) -> Callable[[Dict[str, Any]], Tuple[str, str]]:
    def build(context: Dict[str, Any]) -> Tuple[str, str]:
        if period == 'morning':
            title = 'Good Morning!'
        else:
            title = 'Good Evening!'
        return title, f"Time for your {period} skincare routine. Your skin will thank you!"
    return build


def _streak_warning(context: Dict[str, Any]) -> Tuple[str, str]:
    current_streak = context.get('current_streak', 0)
    if current_streak > 0:
        return 'Streak at Risk!', f"Don't lose your {current_streak} day streak! Complete your routine now."
    return 'Routine Not Done Yet', "There's still time today. Complete your routine before midnight."


def _feedback(context: Dict[str, Any]) -> Tuple[str, str]:
    professional = context.get('professional_name') or 'Your professional'
    return 'New Feedback from Your Professional', f"{professional} has left feedback on your progress photo."


def _product_recommendation(context: Dict[str, Any]) -> Tuple[str, str]:
    professional = context.get('professional_name') or 'Your professional'
    product = context.get('product_name') or 'a new product'
    return 'New Product Recommendation', f"{professional} recommends {product} for your routine."


def _challenge(context: Dict[str, Any]) -> Tuple[str, str]:
    challenge = context.get('challenge_name') or 'your challenge'
    return 'Challenge Update', context.get('message') or f"You reached a new milestone in {challenge}!"


def _appointment_reminder(context: Dict[str, Any]) -> Tuple[str, str]:
    professional = context.get('professional_name')
    starts = context.get('starts_at_display', 'soon')
    if professional:
        return 'Upcoming Appointment', f"Your appointment with {professional} is {starts}."
    return 'Upcoming Appointment', f"Your appointment is {starts}."


CONTENT_BUILDERS: Dict[NotificationCategory, Callable[[Dict[str, Any]], Tuple[str, str]]] = {
    NotificationCategory.AM_REMINDER: _routine_reminder('morning'),
    NotificationCategory.PM_REMINDER: _routine_reminder('evening'),
    NotificationCategory.STREAK_WARNING: _streak_warning,
    NotificationCategory.FEEDBACK: _feedback,
    NotificationCategory.PRODUCT_RECOMMENDATION: _product_recommendation,
    NotificationCategory.CHALLENGE: _challenge,
    NotificationCategory.APPOINTMENT_REMINDER: _appointment_reminder,
}


def _validate_tables() -> None:
    tables = {
        'PUSH_STYLES': PUSH_STYLES,
        'IN_APP_TYPES': IN_APP_TYPES,
        'CONTENT_BUILDERS': CONTENT_BUILDERS,
    }
    for name, table in tables.items():
        missing = [category.value for category in NotificationCategory if category not in table]
        if missing:
            raise RuntimeError(f"{name} has no entry for categories: {', '.join(missing)}")


_validate_tables()


def build_content(category: NotificationCategory, context: Optional[Dict[str, Any]] = None) -> NotificationContent:
    """Title/body for a category, optionally overridden by the triggering event"""
    context = context or {}
    title, body = CONTENT_BUILDERS[category](context)
    style = PUSH_STYLES[category]
    return NotificationContent(
        title=context.get('title') or title,
        body=context.get('body') or body,
        url=context.get('url') or style.url,
        tag=style.tag,
        metadata={k: v for k, v in context.items() if k not in ('title', 'body', 'url')},
    )


def build_push_payload(category: NotificationCategory, content: NotificationContent) -> Dict[str, Any]:
    style = PUSH_STYLES[category]
    icon = NOTIFICATION_ICONS[style.icon_key]
    return {
        'title': content.title,
        'body': content.body,
        'icon': icon,
        'badge': DEFAULT_ICON,
        'tag': content.tag,
        'requireInteraction': style.require_interaction,
        'data': {
            'url': content.url,
            'type': category.value,
        },
        'actions': [action.to_dict() for action in style.actions],
        'vibrate': list(style.vibrate),
    }


def build_sms_message(content: NotificationContent, app_name: str, max_length: int = 160) -> str:
    message = f"{app_name}: {content.title} {content.body}"
    if len(message) <= max_length:
        return message
    return message[:max_length - 3].rstrip() + '...'


def build_opt_in_confirmation(app_name: str) -> str:
    # STOP/HELP keywords are handled by the provider
    return (
        f"{app_name}: You're subscribed to skincare routine reminders. "
        f"Msg & data rates may apply. Reply STOP to opt out."
    )


def build_test_content(title: Optional[str] = None, body: Optional[str] = None) -> NotificationContent:
    """Content for a one-off test send; not tied to any reminder period"""
    return NotificationContent(
        title=title or 'Test Notification',
        body=body or 'Notifications are working. You will get your routine reminders here.',
        url=HOME_URL,
        tag='test-notification',
        metadata={'test': True},
    )


def in_app_type(category: NotificationCategory) -> str:
    return IN_APP_TYPES[category]


def resolve_action_url(action: Optional[str], category: Optional[str], data_url: Optional[str] = None) -> Optional[str]:
    """Where a click on a push notification (or one of its actions) should land.

    Returns None when the click must not navigate anywhere.

    Snooze is not supported: nothing reschedules the reminder server side,
    the request is only logged.
    """
    if action == DISMISS.action:
        return None

    if action == SNOOZE.action:
        logger.info(f"Snooze requested for {category} notification, snooze is not implemented")
        return None

    if action in ACTION_ROUTES:
        return ACTION_ROUTES[action]

    if action not in (None, '', OPEN.action):
        logger.warning(f"Unknown notification action '{action}' for {category}, opening default url")

    return data_url or HOME_URL
