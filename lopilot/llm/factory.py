"""
Inference Client Factory - Creates the configured client instance.
"""

from typing import Any

from .base import InferenceClient
from .ollama_provider import OllamaClient


def create_inference_client(config: Any, **kwargs) -> InferenceClient:
    """
    Create an inference client from settings.

    Args:
        config: Settings object with ollama_base_url, request_timeout, probe_timeout
        **kwargs: Overrides passed to the client (e.g. transport)

    Returns:
        InferenceClient instance
    """
    params = {
        "base_url": config.ollama_base_url,
        "timeout": config.request_timeout,
        "probe_timeout": config.probe_timeout,
    }
    params.update(kwargs)
    return OllamaClient(**params)
