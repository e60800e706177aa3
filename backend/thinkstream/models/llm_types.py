"""
LLM Configuration Type Definitions

This module defines the Pydantic model for the backend endpoint the
chat service streams from.
"""

from pydantic import BaseModel

DEFAULT_BASE_URL = "http://localhost:1234/v1"
DEFAULT_API_KEY = "not-needed"
DEFAULT_MODEL = ""


class LLMConfiguration(BaseModel):
    """
    Connection settings for an OpenAI-compatible endpoint.

    always_starts_with_thinking is for models whose chat template injects
    the opening think tag into the prompt, so the stream begins mid-reasoning.
    """

    name: str = "default"
    base_url: str = DEFAULT_BASE_URL
    api_key: str = DEFAULT_API_KEY
    model_name: str = DEFAULT_MODEL
    always_starts_with_thinking: bool = False
