class NotificationError(Exception):
    """Base exception for notification subsystem errors"""
    status_code = 500

class ValidationError(NotificationError):
    """Raised when a preference update is rejected before persistence"""
    status_code = 400

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field

class NotFoundError(NotificationError):
    """Raised when a user has no preference row"""
    status_code = 404

class CapabilityError(NotificationError):
    """Raised when a channel cannot be used (push denied, SMS unverified)"""
    status_code = 409

class TransportError(NotificationError):
    """Raised when a provider call fails or times out"""
    status_code = 502

    def __init__(self, message: str, provider_status: int = None):
        super().__init__(message)
        self.provider_status = provider_status

    @property
    def subscription_gone(self) -> bool:
        # Push services answer 404/410 for an endpoint that was unsubscribed
        return self.provider_status in (404, 410)
