"""
Pipeline error taxonomy

- ConfigurationError: missing credentials or URLs; fail fast, never retried
- TransientUpstreamError: timeouts, 5xx, malformed feeds; retried via queue backoff
- PermanentUpstreamError: 404/410, rejected content; recorded, not retried
- ExtractionValidationError: AI output failing schema checks; kept for manual reprocessing
- InvalidJobPayload / InvalidTransition: queue misuse
- BlobNotFound: blob store miss
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors"""
    retryable = False


class ConfigurationError(PipelineError):
    """Missing or invalid configuration (credentials, URLs)"""


class TransientUpstreamError(PipelineError):
    """Upstream failure worth retrying later"""
    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentUpstreamError(PipelineError):
    """Upstream failure that will not change on retry"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionValidationError(PipelineError):
    """AI output did not match the extraction schema"""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class InvalidJobPayload(PipelineError):
    """Job payload is missing required fields"""


class InvalidTransition(PipelineError):
    """Job status change outside the allowed edges"""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid job transition {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class BlobNotFound(PipelineError):
    """No blob stored under the requested key"""

    def __init__(self, key: str):
        super().__init__(f"Blob not found: {key}")
        self.key = key


def is_retryable(exc: BaseException) -> bool:
    """
    Decide whether a failed job should be retried with backoff.

    Pipeline errors carry their own flag. Anything unexpected (a bug, a driver
    error) is treated as transient so it lands in retry and eventually dead,
    where it is visible for manual handling.
    """
    if isinstance(exc, PipelineError):
        return exc.retryable
    return True
