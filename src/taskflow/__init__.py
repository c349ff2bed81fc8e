"""Task management backend with time tracking, focus mode and offline sync."""

__version__ = "0.4.0"
