"""Gateway configuration management."""
import json
from functools import lru_cache
from typing import Annotated, Dict, List, Optional

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Static gateway settings, read once at startup."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_GATEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Credentials
    openai_api_keys: Annotated[List[SecretStr], NoDecode] = []
    anthropic_api_keys: Annotated[List[SecretStr], NoDecode] = []
    credential_cooldown_seconds: float = 60.0

    # Context window
    context_window_size: int = 12
    context_history_fetch_multiplier: int = 2
    context_cache_max_conversations: int = 10000

    # Attachments
    text_attachment_char_budget: int = 5000
    pdf_attachment_char_budget: int = 10000
    max_attachment_bytes: int = 20 * 1024 * 1024
    attachment_fetch_timeout_seconds: float = 30.0

    # Provider calls
    provider_timeout_seconds: float = 60.0
    max_output_tokens: int = 2000
    temperature: float = 0.7
    assistant_name: str = "Pulse AI"
    default_system_prompt: str = (
        "You are a helpful AI assistant in a team collaboration platform. "
        "Be concise, professional, and helpful. "
        "You can analyze images and documents when provided."
    )

    # Pricing per 1K tokens, layered over the adapter-owned tables
    pricing_overrides: Dict[str, Dict[str, Dict[str, float]]] = {}

    # Persistence
    redis_url: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    @field_validator("openai_api_keys", "anthropic_api_keys", mode="before")
    @classmethod
    def split_keys(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("pdf_attachment_char_budget")
    @classmethod
    def pdf_budget_exceeds_text_budget(cls, value, info):
        text_budget = info.data.get("text_attachment_char_budget")
        if text_budget is not None and value < text_budget:
            raise ValueError("pdf_attachment_char_budget must not be smaller than text_attachment_char_budget")
        return value

    def credentials_for(self, provider: str) -> List[str]:
        keys = {
            "openai": self.openai_api_keys,
            "anthropic": self.anthropic_api_keys,
        }.get(provider, [])
        return [key.get_secret_value() for key in keys]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
