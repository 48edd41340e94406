import logging
from pathlib import Path

from fastapi import HTTPException
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_TOGETHER_API_URL = "https://api.together.ai/v1/completions"
DEFAULT_HUGGINGFACE_API_URL = "https://api-inference.huggingface.co/models/prompthero/openjourney"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    use_mock_data: bool = Field(False, validation_alias="USE_MOCK_DATA")
    together_api_key: str = Field("", validation_alias="TOGETHER_API_KEY")
    together_api_url: str = Field(DEFAULT_TOGETHER_API_URL, validation_alias="TOGETHER_API_URL")
    huggingface_api_key: str = Field("", validation_alias="HUGGINGFACE_API_KEY")
    huggingface_api_url: str = Field(DEFAULT_HUGGINGFACE_API_URL, validation_alias="HUGGINGFACE_API_URL")
    public_dir: Path = Field(Path("public"), validation_alias="ATELIER_PUBLIC_DIR")
    provider_timeout_seconds: float = Field(120.0, gt=0, validation_alias="PROVIDER_TIMEOUT_SECONDS")
    upload_echo_base_url: str = Field("https://example.com/uploads", validation_alias="UPLOAD_ECHO_BASE_URL")

    @field_validator("use_mock_data", mode="before")
    @classmethod
    def _only_literal_true(cls, value: object) -> bool:
        # Mock mode is on for the exact string "true" only, not for "1" or "yes".
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() == "true"

    @field_validator("upload_echo_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def upload_dir(self) -> Path:
        return self.public_dir / "uploads"

    @property
    def demo_results_dir(self) -> Path:
        return self.public_dir / "demo-results"

    @property
    def test_results_dir(self) -> Path:
        return self.public_dir / "test-results"


def get_settings() -> Settings:
    # Built on every request so environment changes apply without a restart.
    try:
        return Settings()
    except ValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        raise HTTPException(status_code=500, detail="Invalid server configuration") from exc
