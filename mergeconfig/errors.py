class ConfigError(Exception):
    """Base class for configuration lookup errors."""


class FetchError(ConfigError):
    """Raised by a content accessor when a file could not be retrieved.

    A missing file is not an error: accessors return None for it.
    """

    def __init__(self, path: str, message: str):
        super().__init__(f"failed to fetch content of {path!r}: {message}")
        self.path = path


class ConfigDecodeError(ConfigError):
    """Raised when a document is not valid for the requested schema."""


class ConfigNotFoundError(ConfigError):
    """No candidate path held a valid configuration."""
