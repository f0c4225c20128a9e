"""Known model families and their human-readable names."""

from typing import Dict

# internal base name -> display name
MODEL_DISPLAY_NAMES: Dict[str, str] = {
    "gemma3": "Google Gemma3",
    "llama3.1": "Meta Llama 3.1",
    "mistral": "Mistral",
    "deepseek-r1": "DeepSeek R1",
    "codellama": "Meta Code Llama",
}


def display_name(internal_name: str) -> str:
    """
    Turn "gemma3:1b" into "Google Gemma3 (1b)".

    Unknown families keep their base name; names without a tag get no suffix.
    """
    base, _, variant = internal_name.partition(":")
    friendly = MODEL_DISPLAY_NAMES.get(base, base)
    return f"{friendly} ({variant})" if variant else friendly

