from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GUIDANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    spat_feed_url: Optional[str] = None
    spat_replay_path: Optional[Path] = None
    spat_replay_loop: bool = True
    request_timeout_seconds: float = Field(default=5.0, gt=0.0)
    poll_interval_seconds: float = Field(default=3.0, gt=0.0)
    acquisition_interval_seconds: float = Field(default=0.5, gt=0.0)
    staleness_window_seconds: float = Field(default=10.0, gt=0.0)
    countdown_tick_seconds: float = Field(default=1.0, gt=0.0)
    failure_alert_threshold: int = Field(default=3, ge=1)
    log_format: Literal["text", "json"] = "text"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_source(self) -> "AppSettings":
        if self.spat_replay_path is not None:
            self.spat_replay_path = self.spat_replay_path.expanduser()
        if self.acquisition_interval_seconds > self.poll_interval_seconds:
            self.acquisition_interval_seconds = self.poll_interval_seconds
        return self

    @property
    def has_spat_source(self) -> bool:
        return bool(self.spat_feed_url or self.spat_replay_path)


def get_settings() -> AppSettings:
    return AppSettings()
