"""
Generative model providers.
"""

from wali.providers.base import LLMProvider
from wali.providers.dashscope import DashScopeProvider
from wali.providers.openai import OpenAIProvider

__all__ = ["LLMProvider", "DashScopeProvider", "OpenAIProvider"]
