"""Sprint Bot: task/sprint workflow engine for small teams behind a chat interface."""

__version__ = "0.1.0"
