import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator


class ConfigError(Exception):
    pass


# environment variable -> Config field
ENV_FIELDS = {
    "TELEGRAM_BOT_TOKEN": "token",
    "TELEGRAM_API_URL": "api_url",
    "POLL_TIMEOUT": "poll_timeout",
    "HANDLER_WORKERS": "workers",
    "DEFAULT_LANGUAGE": "default_language",
    "SUPPORTED_LANGUAGES": "languages",
    "CAPTCHA_ASSETS_DIR": "assets_dir",
    "ENABLE_TEST_CAPTCHA": "test_command",
    "SWEEP_INTERVAL": "sweep_interval",
    "LOG_LEVEL": "log_level",
}


class Config(BaseModel):
    token: str = Field(min_length=1)
    api_url: str = "https://api.telegram.org"
    poll_timeout: int = Field(default=30, ge=0)
    workers: int = Field(default=8, ge=1)
    default_language: str = "en"
    languages: List[str] = Field(default_factory=lambda: ["en", "ru"], min_length=1)
    assets_dir: Optional[str] = None
    test_command: bool = False
    sweep_interval: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"

    @field_validator("languages", mode="before")
    @classmethod
    def split_languages(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v


def load_config(env_file: Optional[str] = None) -> Config:
    load_dotenv(os.path.join(os.getcwd(), ".env"))
    if env_file:
        load_dotenv(env_file, override=True)

    if not os.getenv("TELEGRAM_BOT_TOKEN"):
        raise ConfigError("TELEGRAM_BOT_TOKEN environment variable is required")

    # unset and empty variables both fall back to the defaults
    values = {field: os.environ[name] for name, field in ENV_FIELDS.items() if os.getenv(name)}
    try:
        return Config.model_validate(values)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
