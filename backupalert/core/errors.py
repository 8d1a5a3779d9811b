"""Exception hierarchy for notification delivery and rule evaluation."""


class NotificationError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(NotificationError):
    """Channel configuration or rule definition is invalid."""


class UnsafeDestinationError(NotificationError):
    """Destination rejected by the outbound address policy."""


class InvalidURLError(UnsafeDestinationError):
    """URL is empty, malformed, or uses a disallowed scheme."""


class DNSResolutionError(UnsafeDestinationError):
    """Destination host could not be resolved."""


class BlockedAddressError(UnsafeDestinationError):
    """Destination resolves to a blocked address range."""


class OutboundDisabledError(NotificationError):
    """Outbound delivery is disabled by air-gap mode."""

    def __init__(self, message: str = "outbound notifications disabled: air-gap mode is enabled"):
        super().__init__(message)


class DeliveryError(NotificationError):
    """Destination rejected the delivery or was unreachable."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 1,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.status_code = status_code


class ChannelNotFoundError(NotificationError):
    """Notification channel does not exist."""


class RuleNotFoundError(NotificationError):
    """Notification rule does not exist."""
