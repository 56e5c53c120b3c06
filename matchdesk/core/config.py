"""Configuration models and YAML loader for the report pipeline."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/matchdesk.db"


class ImageConfig(BaseModel):
    """Applicant photo fetch and transcode settings."""

    timeout_s: float = Field(default=15.0, gt=0)
    max_dimension: int = Field(default=1600, ge=64, le=8192)
    quality: int = Field(default=80, ge=10, le=100)


class CozeConfig(BaseModel):
    """Settings for the asynchronous (submit/poll/fetch) chat backend."""

    base_url: str = "https://api.coze.cn"
    bot_id: str = ""
    user_id: str = "matchdesk"
    request_timeout_s: float = Field(default=30.0, gt=0)


class AIConfig(BaseModel):
    """AI completion backend selection and polling bounds."""

    backend: str = "openrouter"
    model: str | None = None
    timeout_s: float = Field(default=300.0, gt=0)
    max_tokens: int = Field(default=4000, ge=256)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    poll_interval_s: float = Field(default=2.0, ge=0.0)
    poll_max_attempts: int = Field(default=150, ge=1)
    coze: CozeConfig = Field(default_factory=CozeConfig)

    @field_validator("backend")
    @classmethod
    def backend_normalized(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            msg = "backend must not be empty"
            raise ValueError(msg)
        return v


class RenderConfig(BaseModel):
    """Headless browser PDF rendering settings."""

    timeout_ms: int = Field(default=30000, ge=1000)
    page_size: str = "A4"
    margin_mm: int = Field(default=15, ge=0, le=50)
    brand_line: str = "© Crush & Beyond - love, with insight"
    font_path: str | None = None
    logo_path: str | None = None


class StorageConfig(BaseModel):
    """Where PDF artifacts are written and how they are reached."""

    reports_dir: str = "public/reports"
    public_base_url: str = "http://localhost:3001/reports"

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    images: ImageConfig = Field(default_factory=ImageConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
