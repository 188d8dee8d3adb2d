"""Policy-rewriting relay between an editor assistant and OpenAI-compatible backends."""

__version__ = "1.0.0"
