"""mentor-meter exception hierarchy.

Entitlement denials are never raised; they are returned as data by the
evaluator. These exceptions cover configuration, lookup and webhook
authentication failures.
"""


class MentorMeterError(Exception):
    """Base exception for all mentor-meter errors."""

    def __init__(self, message: str = "", code: str = "MENTOR_METER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TierNotFoundError(MentorMeterError):
    """Raised when a tier id or billing price id has no tier definition."""

    def __init__(self, message: str = "Subscription tier configuration not found"):
        super().__init__(message, code="TIER_NOT_FOUND")


class SubscriptionNotFoundError(MentorMeterError):
    """Raised by admin lookups when a subscriber has no billing record."""

    def __init__(self, message: str = "Subscription not found"):
        super().__init__(message, code="SUBSCRIPTION_NOT_FOUND")


class ConversationNotFoundError(MentorMeterError):
    """Raised when a provider conversation id is unknown."""

    def __init__(self, message: str = "Conversation not found"):
        super().__init__(message, code="CONVERSATION_NOT_FOUND")


class InvalidPayloadError(MentorMeterError):
    """Raised when a webhook body cannot be parsed."""

    def __init__(self, message: str = "Invalid JSON payload"):
        super().__init__(message, code="INVALID_PAYLOAD")


class WebhookAuthError(MentorMeterError):
    """Raised when an inbound webhook fails origin, signature or ownership checks."""

    def __init__(self, message: str = "Unauthorized webhook", status_code: int = 401):
        self.status_code = status_code
        super().__init__(message, code="WEBHOOK_UNAUTHORIZED")
