"""AI Notes Maker: syllabus-aligned study notes for Pakistani board students."""

__version__ = "1.0.0"
