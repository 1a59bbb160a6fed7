"""
Central configuration. All API keys and settings in one place.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Environment ---
    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    # --- Sessions ---
    session_timeout_ms: int = Field(default=1_800_000, alias="SESSION_TIMEOUT")
    max_concurrent_sessions: int = Field(default=50, alias="MAX_CONCURRENT_SESSIONS")
    session_cleanup_interval_ms: int = Field(default=300_000, alias="SESSION_CLEANUP_INTERVAL")

    # --- Realtime engine (OpenAI) ---
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    realtime_model: str = Field(default="gpt-4o-realtime-preview", alias="REALTIME_MODEL")
    realtime_voice: str = Field(default="alloy", alias="REALTIME_VOICE")
    transcription_model: str = Field(default="whisper-1", alias="TRANSCRIPTION_MODEL")

    # --- Event pipeline ---
    audio_debounce_ms: int = Field(default=100, alias="AUDIO_DEBOUNCE_MS")
    history_poll_interval_ms: int = Field(default=5000, alias="HISTORY_POLL_INTERVAL_MS")
    audio_sample_rate: int = Field(default=24000, alias="AUDIO_SAMPLE_RATE")

    # --- Archive ---
    conversations_dir: str = Field(default="./local-conversations", alias="CONVERSATIONS_DIR")
    conversations_prefix: str = Field(default="conversations", alias="CONVERSATIONS_PREFIX")

    # --- AWS S3 ---
    aws_access_key_id: str = Field(default="", alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str = Field(default="", alias="AWS_SECRET_ACCESS_KEY")
    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    s3_bucket_name: str = Field(default="insurance-voice-conversations", alias="S3_BUCKET_NAME")

    # --- Redis ---
    redis_url: str = Field(default="", alias="REDIS_URL")
    redis_channel_prefix: str = Field(default="voice-intake", alias="REDIS_CHANNEL_PREFIX")

    # --- Vehicle / zip reference lookup ---
    vehicle_catalog_base_url: str = Field(
        default="https://form.quotewizard.com/kube",
        alias="VEHICLE_CATALOG_BASE_URL",
    )
    min_vehicle_year: int = Field(default=1987, alias="MIN_VEHICLE_YEAR")

    # --- API ---
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
