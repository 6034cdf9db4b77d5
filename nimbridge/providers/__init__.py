"""Upstream completion providers."""

from nimbridge.providers.base import LLMProvider, LLMResponse, UpstreamStream
from nimbridge.providers.nim import NimProvider

__all__ = ["LLMProvider", "LLMResponse", "NimProvider", "UpstreamStream"]
