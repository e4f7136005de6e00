# =============================================================================
# Error Taxonomy
# =============================================================================
#
# Every failure the core can report falls into one of five kinds:
#
#   ValidationError   — bad input shape or status value      → HTTP 400
#   NotFoundError     — unknown id                           → HTTP 404
#   UnauthorizedError — ownership mismatch / no identity     → HTTP 401
#   ProviderError     — embedding or generation call failed,
#                       or returned malformed data           → HTTP 502
#   StorageError      — transactional failure (rolled back)  → HTTP 500
#
# ProviderError is swallowed at exactly three places, each with a logged
# fallback: semantic matching (→ generic assignment), agreement check
# (→ "disagree"), quality assessment (→ canned default).
# =============================================================================


class ExpertQAError(Exception):
    """Base class for all errors raised by the core."""

    status_code: int = 500


class ValidationError(ExpertQAError):
    """Input failed validation before any side effect happened."""

    status_code = 400


class NotFoundError(ExpertQAError):
    """A referenced entity does not exist."""

    status_code = 404


class UnauthorizedError(ExpertQAError):
    """The caller does not own the entity it is acting on."""

    status_code = 401


class ProviderError(ExpertQAError):
    """The embedding or language-model provider failed."""

    status_code = 502


class StorageError(ExpertQAError):
    """The storage transaction failed and was rolled back."""

    status_code = 500
