from enum import Enum


class NotificationCategory(Enum):
    AM_REMINDER = "am_reminder"
    PM_REMINDER = "pm_reminder"
    STREAK_WARNING = "streak_warning"
    FEEDBACK = "feedback"
    PRODUCT_RECOMMENDATION = "product_recommendation"
    CHALLENGE = "challenge"
    APPOINTMENT_REMINDER = "appointment_reminder"


class Channel(Enum):
    PUSH = "push"
    SMS = "sms"
    IN_APP = "in_app"


# Dispatch order inside a tick. Earlier categories go first but never suppress later ones.
CATEGORY_PRIORITY = [
    NotificationCategory.APPOINTMENT_REMINDER,
    NotificationCategory.STREAK_WARNING,
    NotificationCategory.AM_REMINDER,
    NotificationCategory.PM_REMINDER,
    NotificationCategory.FEEDBACK,
    NotificationCategory.PRODUCT_RECOMMENDATION,
    NotificationCategory.CHALLENGE,
]

CHANNEL_ORDER = [Channel.PUSH, Channel.SMS, Channel.IN_APP]

EVENT_CATEGORIES = {
    NotificationCategory.FEEDBACK,
    NotificationCategory.PRODUCT_RECOMMENDATION,
    NotificationCategory.CHALLENGE,
}

# Preference toggle guarding each category
CATEGORY_TOGGLES = {
    NotificationCategory.AM_REMINDER: 'am_reminder_enabled',
    NotificationCategory.PM_REMINDER: 'pm_reminder_enabled',
    NotificationCategory.STREAK_WARNING: 'streak_warning_enabled',
    NotificationCategory.FEEDBACK: 'feedback_notifications_enabled',
    NotificationCategory.PRODUCT_RECOMMENDATION: 'product_recommendations_enabled',
    NotificationCategory.CHALLENGE: 'challenge_notifications_enabled',
    NotificationCategory.APPOINTMENT_REMINDER: 'appointment_reminders_enabled',
}
