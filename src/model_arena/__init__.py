"""Model Arena: stream one prompt to many LLMs and compare them side by side."""

__version__ = "0.1.0"
