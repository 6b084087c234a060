"""NodeFlow: execution engine for graphs of AI, API, logic and file nodes."""

__version__ = "1.0.0"
