from __future__ import annotations


class RecorderError(RuntimeError):
    """Base class for failures that end a recording session."""


class ConnectError(RecorderError):
    """The pricing stream could not be opened (network, TLS, non-2xx)."""


class TransportError(RecorderError):
    """The stream failed or ended after it was opened."""


class ParseError(RecorderError):
    """A stream line is not a recognizable message."""


class FileIOError(RecorderError):
    """The output file could not be opened or appended to."""


class ConfigError(RecorderError):
    """Startup configuration is missing or invalid."""
