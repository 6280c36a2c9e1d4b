"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from pairbot.core.types import QrFormat


class ReconnectConfig(BaseModel):
    max_attempts: int = 5
    base_delay: float = 3.0
    max_delay: Optional[float] = None  # None keeps the backoff uncapped
    recoverable_codes: list[str] = Field(default_factory=lambda: ["515"])
    recoverable_markers: list[str] = Field(default_factory=lambda: ["Stream Errored"])


class SessionConfig(BaseModel):
    transport: str = ""  # "package.module:factory"
    auth_dir: str = "./auth_info"
    transport_options: dict[str, Any] = Field(default_factory=dict)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)


class QrConfig(BaseModel):
    ttl_seconds: float = 120.0
    default_format: QrFormat = QrFormat.PNG
    width: int = 256
    margin: int = 1
    error_correction: str = "M"
    dark: str = "#000000"
    light: str = "#FFFFFF"
    jpeg_quality: int = 90


class MessagesConfig(BaseModel):
    max_history_size: int = 100
    max_retries: int = 3
    retry_delay: float = 2.0
    max_retry_delay: float = 5.0
    preview_length: int = 100
    recipient_suffix: str = "s.whatsapp.net"
    min_digits: int = 10
    max_digits: int = 15
    max_image_bytes: int = 16 * 1024 * 1024


class RateLimitConfig(BaseModel):
    max_requests: int = 100
    window_seconds: float = 3600.0
    history_size: int = 100


class ConversationConfig(BaseModel):
    flow_path: Optional[str] = None
    start_step: str = "start"
    closing_step: str = "cierre"
    inactivity_timeout: float = 60.0
    closing_delay: float = 1.5
    invalid_option_notice: str = "❌ Opción no válida."
    inactivity_notice: str = "⌛ Como no interactuaste, cerramos la conversación. Escríbenos cuando quieras."
    closing_ack: str = "✅ Gracias por tu interés. ¡Hasta pronto!"
    step_error: str = "Error: paso inválido."


class ImagesConfig(BaseModel):
    public_dir: str = "./public"
    base_url: Optional[str] = None
    timeout: float = 30.0
    user_agent: str = "Mozilla/5.0 (compatible; pairbot)"


class TemplatesConfig(BaseModel):
    path: Optional[str] = None


class SchedulerServiceConfig(BaseModel):
    timezone: str = "UTC"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # console | json
    data_dir: str = "./data"
    session: SessionConfig = Field(default_factory=SessionConfig)
    qr: QrConfig = Field(default_factory=QrConfig)
    messages: MessagesConfig = Field(default_factory=MessagesConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    images: ImagesConfig = Field(default_factory=ImagesConfig)
    templates: TemplatesConfig = Field(default_factory=TemplatesConfig)
    scheduler: SchedulerServiceConfig = Field(default_factory=SchedulerServiceConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
