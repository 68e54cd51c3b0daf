"""
SealDeal - Exceptions
Typed errors raised by the pipeline and mapped to HTTP responses by the server
"""

from typing import Any, Dict, Optional


class SealDealError(Exception):
    """Base exception for all SealDeal errors"""

    status_code = 500

    def __init__(self, message: str, code: str = "INTERNAL", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class UnauthenticatedError(SealDealError):
    status_code = 401

    def __init__(self, message: str = "You must be logged in."):
        super().__init__(message, "UNAUTHENTICATED")


class PermissionDeniedError(SealDealError):
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions."):
        super().__init__(message, "PERMISSION_DENIED")


class InvalidArgumentError(SealDealError):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, "INVALID_ARGUMENT", {"field": field} if field else None)
        self.field = field


class NotFoundError(SealDealError):
    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with ID {resource_id} not found.", "NOT_FOUND")
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(SealDealError):
    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, "CONFLICT")


class IllegalTransitionError(ConflictError):
    """Raised when a deal status change is not on the lifecycle path"""

    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal deal status transition {current} -> {target}")
        self.code = "ILLEGAL_TRANSITION"
        self.current = current
        self.target = target


class ModelAPIError(SealDealError):
    """Non-success HTTP status from the generative model endpoint"""

    status_code = 502

    def __init__(self, status_code: int, body: str):
        super().__init__(f"API call failed: {body}", "MODEL_API_ERROR", {"status": status_code})
        self.http_status = status_code
        self.body = body


class ModelResponseError(SealDealError):
    """Model answered, but the answer is unusable"""

    status_code = 502

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message, "MODEL_RESPONSE_ERROR")
        self.raw_text = raw_text


class ServiceUnavailableError(SealDealError):
    status_code = 503

    def __init__(self, message: str = "The AI service is currently overloaded. Please try again later."):
        super().__init__(message, "UNAVAILABLE")


class DocumentIngestError(SealDealError):
    """A single document could not be downloaded or decoded"""

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"Failed to ingest {file_name}: {reason}", "DOCUMENT_INGEST_ERROR", {"fileName": file_name})
        self.file_name = file_name


class AnalysisFailedError(SealDealError):
    """Pipeline failure surfaced to the caller with the raw cause"""

    def __init__(self, deal_id: str, reason: str):
        super().__init__("An error occurred during the analysis.", "INTERNAL", {"details": reason, "dealId": deal_id})
        self.deal_id = deal_id
        self.reason = reason


class AnalyticsExportError(SealDealError):
    """Columnar store rejected one or more rows"""

    def __init__(self, errors):
        super().__init__(f"Analytics export failed: {errors}", "EXPORT_ERROR", {"errors": errors})
        self.errors = errors
