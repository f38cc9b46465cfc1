"""Event-driven message orchestration for tool-using chat assistants."""

__version__ = "0.1.0"
