"""StoryFriends: phase-based story generation workflow engine."""

__version__ = "0.4.0"
