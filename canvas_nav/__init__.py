"""Page tree navigation and snapshot persistence for a canvas editor."""

__version__ = "0.1.0"
