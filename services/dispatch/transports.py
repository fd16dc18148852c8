import logging
from typing import Any, Dict, Optional

import httpx
from django.conf import settings

from services.exceptions import TransportError

logger = logging.getLogger(__name__)

TWILIO_API_BASE = 'https://api.twilio.com/2010-04-01'


class TwilioSmsClient:
    """Sends SMS through the Twilio REST API.

    Either a From number or a Messaging Service SID must be configured; the
    messaging service wins when both are present.
    """

    def __init__(self, account_sid: str, auth_token: str, from_number: str = '',
                 messaging_service_sid: str = '', timeout: float = 10.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self.timeout = timeout
        self.http_client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and (self.from_number or self.messaging_service_sid))

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(url, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.post(url, **kwargs)

    async def send(self, to_phone: str, message: str) -> Dict[str, Any]:
        if not self.configured:
            raise TransportError("Twilio credentials are not configured")
        if not to_phone or not to_phone.startswith('+'):
            raise TransportError(f"Phone number must be in E.164 format, got {to_phone!r}")

        data = {'To': to_phone, 'Body': message}
        if self.messaging_service_sid:
            data['MessagingServiceSid'] = self.messaging_service_sid
        else:
            data['From'] = self.from_number

        try:
            response = await self._post(
                f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json",
                auth=(self.account_sid, self.auth_token),
                data=data,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Twilio request failed: {str(e)}")
            raise TransportError(f"Twilio request failed: {str(e)}")

        if response.status_code in (200, 201):
            result = response.json()
            logger.info(f"SMS accepted by Twilio (SID: {result.get('sid')})")
            return {'message_id': result.get('sid'), 'status': result.get('status')}

        try:
            error = response.json()
            error_message = error.get('message', 'Unknown error')
            error_code = error.get('code')
        except ValueError:
            error_message = response.text or 'Unknown error'
            error_code = None

        logger.error(f"Twilio rejected SMS: {response.status_code} {error_code} {error_message}")
        raise TransportError(
            f"Twilio error {error_code or response.status_code}: {error_message}",
            provider_status=response.status_code
        )


class PushGatewayClient:
    """Posts web-push payloads to the push gateway that holds the VAPID keys"""

    def __init__(self, api_url: str, api_key: str = '', timeout: float = 10.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.http_client = http_client

    async def _post(self, **kwargs) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(self.api_url, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.post(self.api_url, **kwargs)

    async def send(self, subscription: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_url:
            raise TransportError("Push gateway url is not configured")

        headers = {'Authorization': f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = await self._post(
                json={'subscription': subscription, 'payload': payload},
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Push gateway request failed: {str(e)}")
            raise TransportError(f"Push gateway request failed: {str(e)}")

        if response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = {}
            return {'message_id': body.get('id'), 'status': body.get('status', 'sent')}

        logger.warning(f"Push gateway returned {response.status_code} for {subscription.get('endpoint')}")
        raise TransportError(
            f"Push gateway error {response.status_code}: {response.text}",
            provider_status=response.status_code
        )


def build_sms_client(timeout: Optional[float] = None) -> TwilioSmsClient:
    return TwilioSmsClient(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_FROM_NUMBER,
        messaging_service_sid=settings.TWILIO_MESSAGING_SERVICE_SID,
        timeout=timeout or settings.DISPATCH_TIMEOUT_SECONDS,
    )


def build_push_client(timeout: Optional[float] = None) -> PushGatewayClient:
    return PushGatewayClient(
        api_url=settings.PUSH_GATEWAY_URL,
        api_key=settings.PUSH_GATEWAY_API_KEY,
        timeout=timeout or settings.DISPATCH_TIMEOUT_SECONDS,
    )
