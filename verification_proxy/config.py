import json
from typing import List, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list(v) -> List[str]:
    """Accept a JSON array or a comma-separated string and return a list of strings."""
    if v is None or v == "":
        return []
    if isinstance(v, str):
        v = v.strip()
        try:
            parsed = json.loads(v)
            if isinstance(parsed, list):
                return [str(item) for item in parsed]
        except json.JSONDecodeError:
            pass
        return [item.strip() for item in v.split(",") if item.strip()]
    if isinstance(v, list):
        return [str(item) for item in v]
    raise TypeError("value must be a string or list")


class Settings(BaseSettings):
    app_name: str = Field("verification-proxy", alias="APP_NAME")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    storage_backend: str = Field("redis", alias="STORAGE_BACKEND")
    redis_url: str = Field("redis://redis:6379/0", alias="REDIS_URL")
    registry_key_prefix: str = Field("verification_proxy", alias="REGISTRY_KEY_PREFIX")
    registry_lock_timeout_seconds: float = Field(10.0, alias="REGISTRY_LOCK_TIMEOUT_SECONDS")

    provider_base_url: str = Field("http://providers:8080", alias="PROVIDER_BASE_URL")
    provider_timeout_seconds: float = Field(10.0, alias="PROVIDER_TIMEOUT_SECONDS")

    admin_token: str = Field("", alias="ADMIN_TOKEN")
    metrics_username: str = Field("", alias="METRICS_USERNAME")
    metrics_password: str = Field("", alias="METRICS_PASSWORD")

    initial_providers: Union[List[str], str] = Field(default_factory=list, alias="INITIAL_PROVIDERS")
    bootstrap_registries: Union[List[str], str] = Field(
        default_factory=lambda: ["kyc:default", "synth:default"], alias="BOOTSTRAP_REGISTRIES"
    )

    @field_validator("initial_providers", "bootstrap_registries", mode="before")
    @classmethod
    def parse_lists(cls, v):
        """Normalize list settings given either as JSON arrays or comma-separated strings."""
        return _parse_list(v)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)


_settings = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
