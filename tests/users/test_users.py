import pytest
from unittest.mock import AsyncMock, patch
from rest_framework.test import APIClient
from rest_framework import status
from services.decision_engine.NotificationCategory import Channel
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.dispatch.dispatch_adapters import DispatchResult
from users.models import User, NotificationPreference, PushSubscription


@pytest.mark.django_db
class TestUserViewSet:
    @pytest.fixture(autouse=True)
    def setup(self, user_data):
        self.client = APIClient()
        self.user_data = user_data

    @pytest.fixture
    def user_data(self):
        return {
            "name": "Test User",
            "email": "testuser@example.com",
            "phone": "5551234567",
            "role": "client",
            "notification_preferences": {
                "timezone": "America/Chicago",
                "email_enabled": True,
                "sms_enabled": False,
                "push_enabled": False,
            },
        }

    @pytest.fixture
    def create_user(self, user_data):
        user_data_copy = user_data.copy()
        notification_preferences_data = user_data_copy.pop("notification_preferences")
        user = User.objects.create(**user_data_copy)  # Create the User
        NotificationPreference.objects.create(user=user,
                                              **notification_preferences_data)
        return user

    def test_create_user_success(self):
        self.user_data["email"] = "newuser@example.com"
        response = self.client.post("/api/users/", self.user_data, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        assert User.objects.count() == 1
        assert NotificationPreference.objects.get().timezone == "America/Chicago"

    def test_create_user_without_preferences_gets_defaults(self):
        self.user_data.pop("notification_preferences")
        response = self.client.post("/api/users/", self.user_data, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        preference = NotificationPreference.objects.get()
        assert preference.push_enabled is False
        assert preference.sms_enabled is False
        assert preference.streak_warning_hours == 2

    def test_create_user_cannot_enable_push(self):
        # push needs a granted browser subscription first
        self.user_data["notification_preferences"]["push_enabled"] = True
        response = self.client.post("/api/users/", self.user_data, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["notification_preferences"]["push_enabled"] is False
        assert NotificationPreference.objects.get().push_enabled is False
        assert not PushSubscription.objects.exists()

    def test_create_user_duplicate_email(self, create_user):
        response = self.client.post("/api/users/", self.user_data, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_retrieve_user_success(self, create_user):
        response = self.client.get(f"/api/users/{create_user.id}/")
        assert response.status_code == status.HTTP_200_OK
        assert response.data["email"] == create_user.email

    def test_retrieve_user_not_found(self):
        response = self.client.get("/api/users/999/")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_update_user_success(self, create_user):
        data = {"name": "Updated Name"}
        response = self.client.patch(f"/api/users/{create_user.id}/", data, format="json")
        assert response.status_code == status.HTTP_200_OK
        create_user.refresh_from_db()
        assert create_user.name == "Updated Name"

    def test_update_user_validation_error(self, create_user):
        data = {"role": "admin"}
        response = self.client.patch(f"/api/users/{create_user.id}/", data, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_delete_user_deactivates_and_keeps_preferences(self, create_user):
        response = self.client.delete(f"/api/users/{create_user.id}/")
        assert response.status_code == status.HTTP_204_NO_CONTENT

        create_user.refresh_from_db()
        assert create_user.is_active is False
        assert create_user.deactivated_at is not None
        assert NotificationPreference.objects.filter(user=create_user).exists()

        response = self.client.get(f"/api/users/{create_user.id}/")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_delete_user_not_found(self):
        response = self.client.delete("/api/users/999/")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_list_users(self, create_user):
        response = self.client.get("/api/users/")
        assert response.status_code == status.HTTP_200_OK
        assert "results" in response.data
        assert len(response.data["results"]) == 1

    def test_invalid_timezone(self):
        self.user_data["email"] = "timezoneuser@example.com"
        self.user_data["notification_preferences"]["timezone"] = "Invalid/Timezone"
        response = self.client.post("/api/users/", self.user_data, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestNotificationPreferenceEndpoints:
    @pytest.fixture(autouse=True)
    def setup(self, make_user):
        self.client = APIClient()
        self.user = make_user(phone="+15551234567")

    def url(self, suffix):
        return f"/api/users/{self.user.id}/{suffix}/"

    def test_get_preferences(self):
        response = self.client.get(self.url("notification-preferences"))
        assert response.status_code == status.HTTP_200_OK
        assert response.data["timezone"] == "America/New_York"
        assert response.data["am_reminder_time"] == "07:00:00"

    def test_patch_preferences(self):
        response = self.client.patch(
            self.url("notification-preferences"),
            {"pm_reminder_enabled": False, "streak_warning_hours": 3},
            format="json",
        )
        assert response.status_code == status.HTTP_200_OK
        preference = NotificationPreference.objects.get(user=self.user)
        assert preference.pm_reminder_enabled is False
        assert preference.streak_warning_hours == 3

    def test_patch_rejects_out_of_range_streak_hours(self):
        response = self.client.patch(
            self.url("notification-preferences"), {"streak_warning_hours": 6}, format="json"
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["field"] == "streak_warning_hours"

    def test_patch_rejects_sms_without_phone(self):
        response = self.client.patch(
            self.url("notification-preferences"), {"sms_enabled": True}, format="json"
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["field"] == "sms_enabled"
        assert NotificationPreference.objects.get(user=self.user).sms_enabled is False

    def test_patch_rejects_push_without_subscription(self):
        response = self.client.patch(
            self.url("notification-preferences"), {"push_enabled": True}, format="json"
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["field"] == "push_enabled"

    def test_sms_opt_in_uses_profile_phone(self):
        response = self.client.post(self.url("sms-opt-in"), {}, format="json")
        assert response.status_code == status.HTTP_200_OK
        assert response.data["sms_enabled"] is True
        assert response.data["phone_number"] == "+15551234567"
        assert response.data["sms_opted_in_at"] is not None

    def test_sms_opt_in_invalid_phone(self):
        response = self.client.post(self.url("sms-opt-in"), {"phone_number": "12"}, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["field"] == "phone_number"

    def test_sms_opt_out(self):
        self.client.post(self.url("sms-opt-in"), {}, format="json")
        response = self.client.post(self.url("sms-opt-out"), {}, format="json")
        assert response.status_code == status.HTTP_200_OK
        assert response.data["sms_enabled"] is False
        assert response.data["sms_opted_out_at"] is not None

    def test_register_push_subscription(self):
        response = self.client.post(
            self.url("push-subscription"),
            {
                "endpoint": "https://push.example.com/sub/abc",
                "p256dh": "key",
                "auth": "secret",
                "permission": "granted",
            },
            format="json",
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert NotificationPreference.objects.get(user=self.user).push_enabled is True

    def test_register_denied_push_subscription(self):
        response = self.client.post(
            self.url("push-subscription"),
            {"endpoint": "https://push.example.com/sub/abc", "permission": "denied"},
            format="json",
        )
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["push_enabled"] is False
        assert PushSubscription.objects.filter(user=self.user, permission="denied").exists()

    def test_delete_push_subscription(self, grant_push):
        grant_push(self.user)
        NotificationPreference.objects.filter(user=self.user).update(push_enabled=True)

        response = self.client.delete(self.url("push-subscription"), {}, format="json")
        assert response.status_code == status.HTTP_200_OK
        assert response.data["push_enabled"] is False
        assert not PushSubscription.objects.filter(user=self.user, is_active=True).exists()

    def test_preferences_for_unknown_user(self):
        response = self.client.get("/api/users/999/notification-preferences/")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    @patch("users.views.ChannelVerifier")
    def test_send_test_sms(self, mock_verifier_class):
        mock_verifier_class.return_value.send_test = AsyncMock(
            return_value=DispatchResult(DeliveryOutcome.SENT, provider_id="SM123")
        )

        response = self.client.post(self.url("test-notification"), {"channel": "sms"}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {"channel": "sms", "outcome": "sent", "provider_id": "SM123", "error": None}
        user_id, channel, title, body = mock_verifier_class.return_value.send_test.call_args.args
        assert (user_id, channel) == (self.user.id, Channel.SMS)

    @patch("users.views.ChannelVerifier")
    def test_send_test_push_provider_failure(self, mock_verifier_class):
        mock_verifier_class.return_value.send_test = AsyncMock(
            return_value=DispatchResult(DeliveryOutcome.FAILED, error="Push gateway error 500")
        )

        response = self.client.post(self.url("test-notification"), {}, format="json")

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.data["channel"] == "push"
        assert response.data["error"] == "Push gateway error 500"

    def test_send_test_push_when_push_disabled(self):
        response = self.client.post(self.url("test-notification"), {"channel": "push"}, format="json")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert "not enabled" in response.data["error"]

    def test_send_test_unknown_channel(self):
        response = self.client.post(self.url("test-notification"), {"channel": "fax"}, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
