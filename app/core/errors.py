"""Domain errors raised by the import pipeline.

Routers translate these into HTTP responses; services never build
responses themselves.
"""


class ImportFormatError(ValueError):
    """Uploaded file is the wrong type, too large, or cannot be parsed."""


class ImportNotFound(LookupError):
    """Import session keys are missing (never created or expired)."""

    def __init__(self, import_id: str):
        super().__init__(f"Import {import_id} not found or expired")
        self.import_id = import_id


class TodoServiceError(RuntimeError):
    """The upstream todo service could not serve a read."""


class CacheUnavailableError(RuntimeError):
    """Redis is not connected, so session state cannot be stored."""
