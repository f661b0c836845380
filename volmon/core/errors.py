"""Exception hierarchy shared by the volume monitor."""


class VolmonError(Exception):
    """Base class for all volume monitor errors."""


class ValidationError(VolmonError, ValueError):
    """Malformed constructor or setter input (wrong type or out of range)."""


class ExternalProcessError(VolmonError):
    """A spawned command failed to launch or wrote to its error stream."""


class ParseError(VolmonError):
    """Command output did not have the expected tabular or document shape."""


class ProtocolError(VolmonError):
    """A completion arrived that does not fit the scan currently in flight."""


class UnsupportedPlatformError(VolmonError):
    """No command/parser set exists for the host platform."""


__all__ = [
    "ExternalProcessError",
    "ParseError",
    "ProtocolError",
    "UnsupportedPlatformError",
    "ValidationError",
    "VolmonError",
]
