"""
Error taxonomy for dispatch and billing.

Every failure the core can report is a ServiceError subclass with a stable
`kind` string. Routes let these propagate; the exception handler registered
in app.main renders them with make_error_response.
"""
from typing import Optional

from fastapi.responses import JSONResponse


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""
    kind = "internal-error"
    status_code = 500

    def __init__(self, message: str, provider: Optional[str] = None, context: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.context = context or {}


# ===========================================
# Validation (no side effects have happened)
# ===========================================

class ValidationError(ServiceError):
    kind = "validation-error"
    status_code = 400


class UnknownModelError(ValidationError):
    """Model id is not in the registry."""


class InactiveModelError(ValidationError):
    """Model exists for historical display but can no longer be dispatched."""


class UnsupportedRatioError(ValidationError):
    """Aspect ratio is not in the model's supported set."""


class EditNotSupportedError(ValidationError):
    """The model's provider cannot edit images."""


class InsufficientCreditsError(ServiceError):
    kind = "insufficient-credits"
    status_code = 402

    def __init__(self, message: str, required: int, balance: int, context: Optional[dict] = None):
        super().__init__(
            message,
            context={"required_credits": required, "credits": balance, **(context or {})},
        )
        self.required = required
        self.balance = balance


# ===========================================
# Upstream provider failures
# ===========================================

class UpstreamError(ServiceError):
    kind = "upstream-error"
    status_code = 502


class UpstreamAuthError(UpstreamError):
    kind = "upstream-auth-error"
    status_code = 502


class UpstreamRejectedInputError(UpstreamError):
    kind = "upstream-rejected-input"
    status_code = 422


class UpstreamUnavailableError(UpstreamError):
    kind = "upstream-unavailable"
    status_code = 503


class UpstreamBadResponseError(UpstreamError):
    kind = "upstream-bad-response"
    status_code = 502


# ===========================================
# Persistence and billing
# ===========================================

class StorageError(ServiceError):
    kind = "storage-error"
    status_code = 500


class NotFoundError(ServiceError):
    kind = "not-found"
    status_code = 404


class SignatureInvalidError(ServiceError):
    kind = "signature-invalid"
    status_code = 400


class MissingMetadataError(ServiceError):
    kind = "missing-metadata"
    status_code = 400


class PaymentProcessorError(ServiceError):
    kind = "payment-processor-error"
    status_code = 502


def make_error_response(
    status_code: int,
    error_type: str,
    message: str,
    provider: str = None,
    category: str = None,
    recovery: dict = None,
    context: dict = None,
) -> JSONResponse:
    """
    Create a client-friendly error response with structured metadata.

    Categories:
    - transient: Retry may succeed (provider unavailable, timeouts)
    - permanent: Won't succeed without changes (unknown model, bad ratio)
    - policy: Blocked by policy (insufficient credits, rejected prompt)
    - upstream: Provider-side issue
    - billing: Payment processor event could not be applied

    Recovery actions:
    - retry_with_backoff: Retry after a delay
    - choose_cheaper_model: Balance is too low for this model
    - list_models: Pick a model/ratio from /api/models
    - contact_support: Unrecoverable error
    """
    if category is None:
        if error_type == "upstream-unavailable":
            category = "transient"
        elif error_type == "validation-error":
            category = "permanent"
        elif error_type in ("insufficient-credits", "upstream-rejected-input"):
            category = "policy"
        elif error_type.startswith("upstream-"):
            category = "upstream"
        elif error_type in ("signature-invalid", "missing-metadata", "payment-processor-error"):
            category = "billing"
        else:
            category = "unknown"

    if recovery is None:
        if category == "transient":
            recovery = {
                "action": "retry_with_backoff",
                "delay_ms": 2000,
                "max_retries": 2,
            }
        elif error_type == "insufficient-credits":
            recovery = {
                "action": "choose_cheaper_model",
                "endpoint": "/api/models",
            }
        elif error_type == "validation-error":
            recovery = {
                "action": "list_models",
                "endpoint": "/api/models",
            }
        elif error_type == "storage-error":
            recovery = {"action": "contact_support"}

    error_body = {
        "error": {
            "code": error_type.upper().replace("-", "_"),
            "message": message,
            "type": error_type,
            "category": category,
        }
    }

    if provider:
        error_body["error"]["provider"] = provider
    if recovery:
        error_body["error"]["recovery"] = recovery
    if context:
        error_body["error"]["context"] = context

    return JSONResponse(status_code=status_code, content=error_body)


def service_error_response(exc: ServiceError) -> JSONResponse:
    """Render a ServiceError with make_error_response."""
    return make_error_response(
        exc.status_code,
        exc.kind,
        exc.message,
        provider=exc.provider,
        context=exc.context or None,
    )
