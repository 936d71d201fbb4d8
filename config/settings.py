from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here.
    """

    app_env: str = os.getenv("APP_ENV", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    google_api_key: Optional[str] = os.getenv("GOOGLE_API_KEY")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    temperature: float = float(os.getenv("MODEL_TEMPERATURE", "0.3"))
    top_p: float = float(os.getenv("MODEL_TOP_P", "0.9"))
    model_timeout: float = float(os.getenv("MODEL_TIMEOUT", "60"))
    model_max_retries: int = int(os.getenv("MODEL_MAX_RETRIES", "2"))
    system_prompt: str = os.getenv("SYSTEM_PROMPT", "")

    max_message_length: int = int(os.getenv("MAX_MESSAGE_LENGTH", "4000"))
    # 0 means unbounded
    history_window: int = int(os.getenv("HISTORY_WINDOW", "20"))
    error_message_text: str = os.getenv(
        "ERROR_MESSAGE_TEXT",
        "Sorry, I couldn't come up with a reply just now. Please try again shortly.",
    )
    invalid_message_text: str = os.getenv(
        "INVALID_MESSAGE_TEXT", "Please type a message before sending."
    )
    show_transcript: bool = _env_bool("SHOW_TRANSCRIPT", "true")

    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "fragchat_session")
    memory_path: Optional[str] = os.getenv("MEMORY_PATH") or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
