"""Configuration management with YAML and environment variable support."""

import os
from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


CONFIG_PATH_ENV = "REELGEN_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Loads the YAML config file named by $REELGEN_CONFIG (default ./config.yaml).

    A missing default file is fine; a missing file that was named explicitly
    is a configuration error.
    """

    def get_field_value(self, field, field_name: str):
        # Whole document is returned from __call__
        pass

    def __call__(self) -> dict:
        explicit = os.environ.get(CONFIG_PATH_ENV)
        yaml_path = Path(explicit or DEFAULT_CONFIG_PATH)
        if not yaml_path.exists():
            if explicit:
                raise FileNotFoundError(f"{CONFIG_PATH_ENV} points at missing file {yaml_path}")
            return {}

        data = yaml.safe_load(yaml_path.read_text()) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{yaml_path}: expected a mapping at the top level")
        return data


class StorageConfig(BaseModel):
    """Database and artifact storage configuration.

    When artifact_service_url is set, artifacts are uploaded through the
    remote two-step upload service; otherwise they are kept on local disk
    under artifact_dir and served by the API.
    """

    database_url: str = "sqlite+aiosqlite:///reelgen.db"
    artifact_dir: Path = Path("tmp/artifacts")
    artifact_base_url: str = "http://localhost:8000/api/artifacts"
    artifact_service_url: Optional[str] = None
    artifact_service_key: Optional[str] = None

    @field_validator("artifact_dir", mode="before")
    @classmethod
    def convert_artifact_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    default_style: str = "modern"
    default_duration_seconds: int = 60
    default_aspect_ratio: str = "9:16"
    fps: int = 30
    stage_max_attempts: int = 1
    stage_retry_base_delay: float = 2.0
    list_page_size: int = 20
    max_list_page_size: int = 100
    script_max_attempts: int = 2
    code_max_attempts: int = 3


class RenderConfig(BaseModel):
    """Render backend configuration.

    Distributed mode is used when both service_url and function_name are
    set. Anything else falls back to the local renderer.
    """

    service_url: Optional[str] = None
    function_name: Optional[str] = None
    service_key: Optional[str] = None
    serve_url: Optional[str] = None
    composition_id: str = "DynamicVideo"
    poll_interval_seconds: float = 2.0
    max_polls: int = 450
    local_command: list[str] = ["npx", "remotion", "render"]
    local_entry_point: str = "remotion/index.ts"
    local_timeout_ms: int = 240_000
    tmp_dir: Optional[Path] = None

    @field_validator("tmp_dir", mode="before")
    @classmethod
    def convert_tmp_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ModelsConfig(BaseModel):
    """AI model identifiers (provider-prefixed for the LLM registry)."""

    script_llm: str = "openrouter/anthropic/claude-opus-4.6"
    code_llm: str = "openrouter/anthropic/claude-opus-4.6"
    image_model: str = "fal-ai/flux/schnell"


class ProvidersConfig(BaseModel):
    """Endpoints and credentials for the generation providers."""

    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_api_key: Optional[str] = None
    ollama_endpoint: str = "http://localhost:11434"
    ollama_api_key: Optional[str] = None
    image_api_url: str = "https://fal.run"
    image_api_key: Optional[str] = None
    tts_api_url: str = "https://api.elevenlabs.io"
    tts_api_key: Optional[str] = None
    tts_model: str = "eleven_multilingual_v2"
    default_voice_id: str = "21m00Tcm4TlvDq8ikWAM"


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: REELGEN_, delimiter: __)
    2. .env file
    3. YAML file ($REELGEN_CONFIG, default config.yaml)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="REELGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    storage: StorageConfig = StorageConfig()
    pipeline: PipelineConfig = PipelineConfig()
    render: RenderConfig = RenderConfig()
    models: ModelsConfig = ModelsConfig()
    providers: ProvidersConfig = ProvidersConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Insert the YAML source below env and .env.

        Init kwargs still win, which is how tests pin their own values.
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Singleton instance
settings = Settings()
