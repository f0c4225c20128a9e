"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "Lopilot"
    app_version: str = "1.0.0"
    debug: bool = False

    # Inference backend
    ollama_base_url: str = "http://localhost:11434"
    ollama_binary: str = "/usr/local/bin/ollama"
    launch_backend: bool = True  # spawn `ollama serve` when the port is closed
    default_model: str = "gemma3:1b"
    request_timeout: float = 120.0
    probe_timeout: float = 2.0

    # Chat behaviour
    stream_update_interval: float = 0.05  # seconds between UI updates while streaming
    max_attachments: int = 10
    user_display_name: Optional[str] = None  # falls back to the login name
    ignored_focus_apps: list[str] = ["Lopilot", "Finder"]

    # Storage
    storage_path: str = "./data"
    history_key: str = "chat_history.json"
    preferences_key: str = "preferences.json"

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 8765
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/lopilot.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "LOPILOT_"
        case_sensitive = False


settings = Settings()
