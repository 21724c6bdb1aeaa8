"""Provider implementations."""

from flowvision.ai.providers.base import Completion, CompletionProvider
from flowvision.ai.providers.factory import build_completion_provider
from flowvision.ai.providers.openai import OpenAICompletionProvider

__all__ = ["Completion", "CompletionProvider", "OpenAICompletionProvider", "build_completion_provider"]
