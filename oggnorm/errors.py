"""Error taxonomy shared by every oggnorm component.

Failures are converted to one of these kinds at the component boundary so
callers never see raw libsndfile errors or NaN/-inf loudness values.
"""

from __future__ import annotations


class OggNormError(Exception):
    """Base class for all oggnorm errors."""


class ConfigError(OggNormError, ValueError):
    """Invalid parameters or an operation called in the wrong session state."""


class DecodeError(OggNormError):
    """Malformed, truncated or otherwise undecodable compressed input."""


class UnsupportedChannelLayout(OggNormError):
    """Channel count unsupported for the requested operation."""


class InvalidOffset(OggNormError, ValueError):
    """Seek target resolved to a negative offset."""
