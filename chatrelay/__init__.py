"""chatrelay - conversation context assembly and response streaming for LLM chat."""

__version__ = "0.1.0"
__logo__ = "💬"
