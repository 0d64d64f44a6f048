"""Relay domain exceptions."""

from feedz.core.domain.exceptions import (
    InvalidInputError,
    NetworkError,
    TotalFailureError,
)


class InvalidIdentifierError(InvalidInputError):
    """Raised for a malformed npub or hex public key."""

    error_code = "INVALID_IDENTIFIER"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Invalid public key identifier: {identifier!r}")


class RelayError(NetworkError):
    """Base error for a single relay endpoint."""

    def __init__(self, relay: str, message: str):
        self.relay = relay
        super().__init__(f"{relay}: {message}")


class RelayUnavailableError(RelayError):
    """Raised when a relay connection cannot be opened or was lost."""

    error_code = "RELAY_UNAVAILABLE"


class AllRelaysFailedError(TotalFailureError):
    """Raised when no relay endpoint responded at all."""

    def __init__(self, operation: str, relays: list[str]):
        self.operation = operation
        self.relays = relays
        super().__init__(f"No relay responded to {operation} ({len(relays)} tried)")
