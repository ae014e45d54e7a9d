from __future__ import annotations


class ArtifactError(Exception):
    """Base error; carries the HTTP status the API layer should answer with."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ArtifactError):
    status_code = 400

    @classmethod
    def too_large(cls, max_bytes: int) -> "ValidationError":
        return cls(f"File too large. Max {max_bytes // (1024 * 1024)}MB.", status_code=413)


class ConversionError(ArtifactError):
    status_code = 500


class StorageError(ArtifactError):
    status_code = 500


class PackagingError(ArtifactError):
    status_code = 500


class SecurityError(ArtifactError):
    status_code = 403


class InvalidSession(SecurityError):
    def __init__(self, message: str = "Invalid session") -> None:
        super().__init__(message)


class InvalidPath(SecurityError):
    def __init__(self, message: str = "Invalid path") -> None:
        super().__init__(message)


class SessionExpired(SecurityError):
    status_code = 410

    def __init__(self, message: str = "Session expired") -> None:
        super().__init__(message)


class ArtifactNotFound(ArtifactError):
    status_code = 404

    def __init__(self, message: str = "Image not found") -> None:
        super().__init__(message)
