"""Poll issue trackers and start OpenCode sessions for ready work."""

__version__ = "0.1.0"
