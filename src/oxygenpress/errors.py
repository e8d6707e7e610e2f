from __future__ import annotations


class PublishError(Exception):
    """Base class for failures the publish workflow reports to its caller."""

    kind = "publish_error"

    def __init__(self, message: str, *, filename: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.filename = filename

    def __str__(self) -> str:
        if self.filename:
            return f"{self.filename}: {self.message}"
        return self.message


class ValidationError(PublishError):
    kind = "validation_error"

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"missing required field: {field}")
        self.field = field


class MalformedDocumentError(PublishError):
    kind = "malformed_document"


class NotFoundError(PublishError):
    kind = "not_found"

    def __init__(self, path: str) -> None:
        super().__init__("file does not exist", filename=path)


class RevisionConflictError(PublishError):
    kind = "revision_conflict"


class TransportError(PublishError):
    kind = "transport_error"

    def __init__(
        self, message: str, *, status: int | None = None, filename: str | None = None
    ) -> None:
        super().__init__(message, filename=filename)
        self.status = status


class ConfigError(ValueError):
    pass
