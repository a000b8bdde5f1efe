"""newapi-chat: streaming chat and tool orchestration for OpenAI-compatible APIs."""

__version__ = "0.1.0"
