import os
from typing import Optional
from pydantic import BaseModel, Field


class Settings(BaseModel):
    # Models
    image_model: str = Field(default="gemini-2.5-flash-image", description="Model used for photoshoot angles")
    text_model: str = Field(default="gemini-2.5-flash", description="Model used for social captions")
    video_model: str = Field(default="veo-3.1-fast-generate-preview", description="Model used for video animation")
    video_resolution: str = Field(default="720p", description="Requested video resolution")

    # Photoshoot fan-out
    angle_timeout: float = Field(default=120.0, description="Seconds allowed for one angle generation call")

    # Video polling
    poll_interval: float = Field(default=5.0, description="Seconds between video operation polls")
    poll_timeout: float = Field(default=30.0, description="Seconds allowed for a single poll")
    max_poll_failures: int = Field(default=3, description="Consecutive failed polls before giving up")
    fetch_timeout: float = Field(default=60.0, description="Seconds allowed for asset downloads")

    # Paths
    output_root: str = Field(default="studio_runs", description="Root directory for outputs")
    profile_db_path: str = Field(default="profiles.db", description="SQLite file for profiles and studio config")
    jobs_db_path: str = Field(default="jobs.db", description="SQLite file for API jobs")

    # Profiles
    default_credits: int = Field(default=10, description="Credits granted to a new profile")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # API
    api_host: str = Field(default="0.0.0.0", description="API Host")
    api_port: int = Field(default=8000, description="API Port")
    api_key: str = Field(default="dev-secret-key", description="API Key for write access")

    # Backends
    gemini_api_key: Optional[str] = Field(default=None)
    use_mock_backends: bool = Field(default=False, description="Force offline mock backends")

    @property
    def mock_mode(self) -> bool:
        return self.use_mock_backends or not self.gemini_api_key

    @staticmethod
    def load() -> "Settings":
        """
        Load settings from environment variables or defaults.
        Unparseable values are ignored and the default is kept.
        """
        overrides = {}

        env_map = {
            "GEMSTUDIO_IMAGE_MODEL": ("image_model", str),
            "GEMSTUDIO_TEXT_MODEL": ("text_model", str),
            "GEMSTUDIO_VIDEO_MODEL": ("video_model", str),
            "GEMSTUDIO_VIDEO_RESOLUTION": ("video_resolution", str),
            "GEMSTUDIO_ANGLE_TIMEOUT": ("angle_timeout", float),
            "GEMSTUDIO_POLL_INTERVAL": ("poll_interval", float),
            "GEMSTUDIO_POLL_TIMEOUT": ("poll_timeout", float),
            "GEMSTUDIO_MAX_POLL_FAILURES": ("max_poll_failures", int),
            "GEMSTUDIO_FETCH_TIMEOUT": ("fetch_timeout", float),
            "GEMSTUDIO_OUTPUT_ROOT": ("output_root", str),
            "GEMSTUDIO_PROFILE_DB_PATH": ("profile_db_path", str),
            "GEMSTUDIO_JOBS_DB_PATH": ("jobs_db_path", str),
            "GEMSTUDIO_DEFAULT_CREDITS": ("default_credits", int),
            "GEMSTUDIO_LOG_LEVEL": ("log_level", str),
            "GEMSTUDIO_API_HOST": ("api_host", str),
            "GEMSTUDIO_API_PORT": ("api_port", int),
            "GEMSTUDIO_API_KEY": ("api_key", str),
            "GEMSTUDIO_USE_MOCK_BACKENDS": ("use_mock_backends", _parse_bool),
            "GOOGLE_API_KEY": ("gemini_api_key", str),
            "GEMINI_API_KEY": ("gemini_api_key", str),
        }

        for env_var, (field, type_) in env_map.items():
            val = os.getenv(env_var)
            if val is not None:
                try:
                    overrides[field] = type_(val)
                except ValueError:
                    pass  # Keep default if parse fails

        return Settings(**overrides)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Not a boolean: {value}")


# Global settings instance
settings = Settings.load()
