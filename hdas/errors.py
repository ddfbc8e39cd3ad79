# hdas/errors.py


class HdasError(Exception):
    """Base class for every error raised by hdas."""


class ConfigError(HdasError):
    """Invalid configuration value (address, interval, ...)."""


class StoreError(HdasError):
    """Database failure: bad URL, unreachable server, failed migration or statement."""


class ExportError(HdasError):
    """A sweep could not be completed."""


class CollectorUnavailable(ExportError):
    """Connecting or writing to the collector failed."""


class RenderError(ExportError):
    """A stored sample cannot be written in the collector wire format."""
