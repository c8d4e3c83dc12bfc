"""Domain errors raised by the SoilSync services.

Every error subclasses ``ValueError`` so callers that only care about
"bad input or bad upstream data" can keep catching that.
"""
from typing import Optional


class SoilSyncError(ValueError):
    message = "SoilSync error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class CameraUnavailable(SoilSyncError):
    message = "Camera not available. Please use the upload option or allow camera access."


class UnsupportedFileType(SoilSyncError):
    message = "Please select an image file (JPG, PNG, WEBP)"


class FileTooLarge(SoilSyncError):
    message = "Image too large. Please use an image under 10MB."


class MissingImageData(SoilSyncError):
    message = "Image data is required"


class UnparsableResponse(SoilSyncError):
    message = "Failed to parse AI response as JSON"


class InvalidAnalysisPayload(UnparsableResponse):
    message = "AI response does not match the soil analysis schema"


class AnalysisProviderError(SoilSyncError):
    message = "AI analysis service unavailable"
