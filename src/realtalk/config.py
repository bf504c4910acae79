from __future__ import annotations
import os
from dataclasses import dataclass
from dotenv import load_dotenv

from .schemas import LEVELS

load_dotenv()

def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer") from None
    if value < 0:
        raise RuntimeError(f"{name} must be >= 0")
    return value

@dataclass(frozen=True)
class Settings:
    bot_token: str
    database_url: str
    gemini_api_key: str | None
    llm_model: str
    ui_default_lang: str = "zh"  # zh/en
    default_level: str = "intermediate"  # beginner|intermediate|advanced
    transcription_max_restarts: int = 3
    tts_model: str = "gemini-2.5-flash-preview-tts"

def load_settings() -> Settings:
    load_dotenv()
    bot_token = os.getenv("BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is required")

    database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/realtalk.db")
    gemini_api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY") or None
    llm_model = os.getenv("LLM_MODEL", "gemini-2.5-flash").strip()
    ui_default_lang = os.getenv("UI_DEFAULT_LANG", "zh").strip().lower()
    if ui_default_lang not in {"zh", "en"}:
        raise RuntimeError("UI_DEFAULT_LANG must be zh or en")
    default_level = os.getenv("DEFAULT_LEVEL", "intermediate").strip().lower()
    if default_level not in LEVELS:
        raise RuntimeError("DEFAULT_LEVEL must be beginner, intermediate, or advanced")

    return Settings(
        bot_token=bot_token,
        database_url=database_url,
        gemini_api_key=gemini_api_key,
        llm_model=llm_model,
        ui_default_lang=ui_default_lang,
        default_level=default_level,
        transcription_max_restarts=_int_env("TRANSCRIPTION_MAX_RESTARTS", 3),
        tts_model=os.getenv("TTS_MODEL", "gemini-2.5-flash-preview-tts").strip(),
    )
