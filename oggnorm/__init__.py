"""oggnorm — incremental loudness measurement and stem splitting for Ogg Vorbis."""

__version__ = "0.1.0"
