from __future__ import annotations


class ExportError(Exception):
    """Base class for every error raised by the exporter."""


class FetchError(ExportError):
    """Network failure, non-2xx status, timeout or undecodable JSON body."""

    def __init__(self, reference: str, message: str, *, status_code: int | None = None):
        super().__init__(f'{reference}: {message}')
        self.reference = reference
        self.status_code = status_code


class DecodeError(ExportError):
    """Bytes are not a supported raster image."""


class GeometryError(ExportError):
    """Image dimensions cannot be scaled (zero or negative width/height)."""


class RangeExpressionError(ExportError, ValueError):
    """Malformed include/exclude range expression."""


class ExportAbortedError(ExportError):
    """Run metadata or the test list could not be acquired."""
