import itertools

import pytest

from users.models import NotificationPreference, PushSubscription, User

_emails = itertools.count(1)


@pytest.fixture
def make_user(db):
    """Create a client with a preference row; keyword args override preference fields"""
    def _make_user(name="Test Client", phone=None, **preference_fields):
        user = User.objects.create(
            name=name,
            email=f"client{next(_emails)}@example.com",
            phone=phone,
        )
        NotificationPreference.objects.create(user=user, **preference_fields)
        return user
    return _make_user


@pytest.fixture
def grant_push(db):
    def _grant_push(user, endpoint="https://push.example.com/sub/1", permission=PushSubscription.Permission.GRANTED):
        return PushSubscription.objects.create(
            user=user,
            endpoint=endpoint,
            p256dh="p256dh-key",
            auth="auth-secret",
            permission=permission,
        )
    return _grant_push
