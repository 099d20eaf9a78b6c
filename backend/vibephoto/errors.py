"""Domain exceptions for the job engine.

Every exception carries a short machine-readable ``code`` which is persisted
on failed jobs (``error_code``) and returned to API clients.
"""


class VibePhotoError(Exception):
    code = "ERROR"


# ----- Provider submission -----


class SubmissionError(VibePhotoError):
    """The provider rejected or never received the job. No charge is kept."""

    code = "SUBMISSION_FAILED"


class ProviderUnavailable(SubmissionError):
    code = "PROVIDER_UNAVAILABLE"


class InvalidInput(SubmissionError):
    code = "INVALID_INPUT"


class AuthError(SubmissionError):
    code = "AUTH_ERROR"


class QuotaExceeded(SubmissionError):
    code = "QUOTA_EXCEEDED"


class RateLimited(SubmissionError):
    code = "RATE_LIMIT"


class ProviderTransientError(VibePhotoError):
    """Timeout, rate limit or network failure while polling.

    Never retried inline; the next sweep picks the job up again.
    """

    code = "PROVIDER_TRANSIENT"


# ----- Storage -----


class StorageError(VibePhotoError):
    code = "STORAGE_ERROR"


class StorageMigrationError(VibePhotoError):
    code = "STORAGE_MIGRATION_FAILED"


# ----- Credits -----


class InsufficientCredits(VibePhotoError):
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits: {required} required, {available} available"
        )
        self.required = required
        self.available = available


class LedgerError(VibePhotoError):
    """The credit ledger is inconsistent. Fatal: alert, never retry silently."""

    code = "LEDGER_ERROR"


# ----- Job access -----


class InvalidState(VibePhotoError):
    code = "INVALID_STATE"


class NotFound(VibePhotoError):
    code = "NOT_FOUND"


class Forbidden(VibePhotoError):
    code = "FORBIDDEN"


class WebhookVerificationError(VibePhotoError):
    code = "INVALID_SIGNATURE"
