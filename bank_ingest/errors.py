"""
Error taxonomy for statement ingestion.
"""


class IngestError(Exception):
    """Base error carrying a stable error code."""

    def __init__(self, message: str, error_code: str = "ERR_INGEST"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class StructuralError(IngestError):
    """Malformed or unusable input. Never retried."""

    def __init__(self, message: str, error_code: str = "ERR_STRUCTURAL"):
        super().__init__(message, error_code)


class ExtractionError(IngestError):
    """AI adapter failure: unreachable, timed out, or returned unusable JSON."""

    def __init__(self, message: str, error_code: str = "ERR_AI_EXTRACTION"):
        super().__init__(message, error_code)


class DuplicateResolutionError(IngestError):
    """Unknown or already resolved potential duplicate."""

    def __init__(self, message: str, error_code: str = "ERR_DUPLICATE_RESOLUTION"):
        super().__init__(message, error_code)
