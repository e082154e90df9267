"""Node exception hierarchy.

All node-specific exceptions inherit from FedNodeError, so the API layer can
translate them into responses with a single handler and background tasks can
log them without catching unrelated failures.
"""


class FedNodeError(Exception):
    """Base exception for all node errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ConfigurationError(FedNodeError):
    """Invalid event type, distribution rule or runtime configuration."""


class NoMatchingRuleError(ConfigurationError):
    """No distribution rule applies to an event."""


class ValidationError(FedNodeError):
    """Submitted data was rejected before persistence or distribution."""


class SchemaValidationError(ValidationError):
    """Event JSON does not satisfy the event type's JSON schema."""

    def __init__(self, message: str = "", *, violations: list[str] | None = None) -> None:
        super().__init__(message)
        self.violations = list(violations or [])


class ShapeValidationError(ValidationError):
    """Event RDF does not conform to the known SHACL shapes."""

    def __init__(self, message: str = "", *, report: str = "") -> None:
        super().__init__(message)
        self.report = report


class InvalidDestinationError(ValidationError):
    """A peer identity is not a valid distinguished name."""


class InvalidMessageError(ValidationError):
    """A peer envelope or its encoded payload could not be decoded."""


class MappingError(FedNodeError):
    """The mapping engine produced no output for an event."""


class AuthorizationError(FedNodeError):
    """A peer is not allowed to perform the requested operation."""


class DeliveryError(FedNodeError):
    """A message could not be delivered to the peer message endpoint."""

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code
        self.message_id: str | None = None


class NotFoundError(FedNodeError):
    """A referenced entity does not exist."""


class EventTypeNotFound(NotFoundError):
    """No event type is registered under the requested name."""


class MessageNotFound(NotFoundError):
    """No ledger message carries the requested id."""


class TripleStoreError(FedNodeError):
    """Error communicating with the triple store."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class TokenError(FedNodeError):
    """A webhook access token could not be acquired or refreshed."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class LedgerError(FedNodeError):
    """A ledger write violated a storage constraint."""
