"""OpenAI-compatible relay with tiered roleplay memory."""

__version__ = "0.1.0"
