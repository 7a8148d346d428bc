"""Configuration utilities for Module 1 lane detection."""
from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LaneDetectionSettings(BaseSettings):
    """Lane matching configuration sourced from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="GUIDANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    lane_config_path: Path = Field(
        default=Path(__file__).resolve().parent / "intersection.yaml",
        description="Lane geometry and lane-group configuration for the intersection.",
    )
    map_feed_url: Optional[str] = Field(
        default=None,
        description="Lane topology endpoint; overrides the YAML geometry when set.",
    )
    map_request_timeout_seconds: float = Field(default=10.0, gt=0.0)
    intersection_id: Optional[int] = Field(default=None)
    lane_width_meters: float = Field(default=3.5, gt=0.0)
    meters_per_degree: float = Field(default=111_111.0, gt=0.0)
    detection_throttle_ms: int = Field(default=100, ge=0)
    distance_mode: Literal["planar", "haversine"] = Field(default="planar")
    maneuver_encoding: Literal["default", "legacy"] = Field(default="default")

    @field_validator("lane_config_path", mode="before")
    @classmethod
    def _expand_path(cls, value: str | Path) -> Path:
        return Path(value).expanduser()


def load_settings(**overrides: object) -> LaneDetectionSettings:
    """Return lane detection settings, applying optional overrides."""

    return LaneDetectionSettings(**overrides)
