"""Service error hierarchy for generation orchestration.

This module defines the exception hierarchy for service-level errors:
- GenflowError: Base for all service errors, carries the HTTP status routes map it to
- Request errors: ValidationError, NotFoundError, InvalidTokenError
- Provider errors: ProviderSubmissionError, ProviderQueryError
- Event bus errors: PublishError, ConnectionFatalError
- Ledger errors: MalformedEventPayloadError
- Collaborator errors: CollaboratorUnavailableError
"""


class GenflowError(Exception):
    """Base exception for all service errors."""

    status_code: int = 500


class ValidationError(GenflowError):
    """Malformed submission input. Nothing is written to the ledger."""

    status_code = 400


class NotFoundError(GenflowError):
    """Unknown generation, or one the requester does not own.

    Ownership failures are reported as not found so existence is not leaked.
    """

    status_code = 404


class InvalidTokenError(GenflowError):
    """Webhook callback token could not be decoded."""

    status_code = 400


# Provider errors
class ProviderError(GenflowError):
    """Base exception for provider adapter errors."""

    pass


class ProviderSubmissionError(ProviderError):
    """Backend rejected the job (network, authentication or validation failure).

    The Submission Service records a FAILED event before this surfaces.
    """

    status_code = 500

    def __init__(self, message: str, provider: str = "", retryable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable


class ProviderQueryError(ProviderError):
    """Status or result lookup against the backend failed."""

    status_code = 502


class UnknownProviderError(ProviderError):
    """Configured provider name has no adapter."""

    pass


# Event bus errors
class PublishError(GenflowError):
    """Broker rejected or could not receive a message after startup.

    Secondary-channel failure: never rolls back a ledger write.
    """

    pass


class ConnectionFatalError(GenflowError):
    """Broker unreachable at startup after bounded retries."""

    pass


# Ledger errors
class MalformedEventPayloadError(GenflowError):
    """Stored event payload does not match the schema of its event type."""

    pass


# Collaborator errors
class CollaboratorUnavailableError(GenflowError):
    """External collaborator (catalog service) could not be reached."""

    status_code = 502
