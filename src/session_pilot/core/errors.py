"""Exceptions raised by the engine and its adapters."""


class PilotError(Exception):
    """Base class for session-pilot errors."""


class ConfigError(PilotError):
    """Configuration file could not be loaded."""


class SourceConfigError(PilotError):
    """A source has no usable tool binding."""


class SourceFetchError(PilotError):
    """Fetching items from a source failed."""


class LockTimeout(PilotError):
    """The state lock could not be acquired in time."""


class BackendError(PilotError):
    """The execution backend answered with a payload that cannot be read."""
