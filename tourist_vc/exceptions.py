"""
Exception hierarchy for the credential pipeline.

Every error carries a stable ``code`` and the HTTP status the API layer
maps it to. Components raise; only the API boundary converts to responses.
"""

from typing import Optional


class TouristVCError(Exception):
    """Base exception for all credential pipeline errors."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or (self.__class__.__doc__ or "").strip()
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


# ==================== INPUT ====================

class ValidationError(TouristVCError):
    """Missing or malformed caller input."""

    code = "validation_error"
    status_code = 400

    def __init__(self, message: str = "", required: Optional[list] = None):
        super().__init__(message)
        self.required = list(required or [])

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.required:
            body["required"] = self.required
        return body


# ==================== CRYPTO ====================

class KeyGenerationError(TouristVCError):
    """Key material could not be generated."""

    code = "key_generation_failed"


class SigningError(TouristVCError):
    """Issuer has no usable key material for signing."""

    code = "signing_failed"


# ==================== LOOKUP ====================

class NotFoundError(TouristVCError):
    """Referenced identifier or record does not exist."""

    code = "not_found"
    status_code = 404


class ResolutionError(NotFoundError):
    """Issuer DID could not be resolved."""

    code = "resolution_failed"


# ==================== TOKENS ====================

class InvalidTokenError(TouristVCError):
    """Invalid or expired token."""

    code = "invalid_token"
    status_code = 401


class TokenExpiredError(InvalidTokenError):
    """Invalid or expired token."""

    # Same external code as InvalidTokenError; only logs tell them apart.


class MalformedPayloadError(TouristVCError):
    """Invalid token payload."""

    code = "malformed_payload"
    status_code = 400


# ==================== RENDERING ====================

class RenderError(TouristVCError):
    """Document could not be assembled."""

    code = "render_failed"


# ==================== ORCHESTRATION ====================

class IssuanceInProgressError(TouristVCError):
    """Another request is already running this issuance."""

    code = "issuance_in_progress"
    status_code = 409


class IssuanceError(TouristVCError):
    """A step of the issuance pipeline failed."""

    code = "issuance_failed"

    def __init__(self, step: str, cause: Exception):
        super().__init__(f"Issuance failed at {step}: {cause}")
        self.step = step
        self.cause = cause
        if isinstance(cause, TouristVCError):
            self.code = cause.code
            self.status_code = cause.status_code

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["step"] = self.step
        return body
