"""LLM module - client for the local inference server."""

from .base import InferenceClient, GenerateRequest, GenerateChunk
from .ollama_provider import OllamaClient
from .factory import create_inference_client

__all__ = [
    'InferenceClient',
    'GenerateRequest',
    'GenerateChunk',
    'OllamaClient',
    'create_inference_client',
]
