"""Runtime settings, loaded from ``BIZZI_*`` environment variables or ``.env``."""

import logging
from typing import Optional, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BIZZI_",
        env_file=".env",
        extra="ignore",
    )

    # Backend
    base_url: str = "http://localhost:5050"
    timeout: float = 30.0
    default_depth: str = "standard"

    # Thread list / history
    thread_history_limit: int = 200
    initial_page_size: int = 20
    page_size: int = 10
    thread_soft_cap: int = 100
    search_debounce_seconds: float = 0.3
    auto_title_delays: Tuple[float, ...] = (0.4, 0.9, 1.5)

    # Thread view
    reopen_block_seconds: float = 0.45
    follow_threshold_px: float = 64
    scroll_button_threshold_px: float = 96
    typing_indicator_delay_seconds: float = 0.45
    typewriter_chars_per_second: float = 140
    typewriter_frame_seconds: float = 1 / 60

    # Quick prompts
    quick_prompt_max: int = 4
    quick_prompt_ttl_hours: float = 6
    recency_decay_days: float = 14
    exploration_base_score: float = 40
    exploration_jitter: float = 5
    pinned_score: float = 100

    log_level: str = "INFO"

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("auto_title_delays")
    @classmethod
    def _non_negative_delays(cls, value: Tuple[float, ...]) -> Tuple[float, ...]:
        if any(delay < 0 for delay in value):
            raise ValueError("auto_title_delays must be non-negative")
        return value


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Apply ``log_level`` to the package logger; handlers stay with the host app."""
    level_name = (level or settings.log_level).upper()
    logging.getLogger("bizzi_chat").setLevel(getattr(logging, level_name, logging.INFO))
