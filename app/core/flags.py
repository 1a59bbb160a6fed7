"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────────
    use_s3: bool = Field(default=False, alias="FF_USE_S3")
    # ON  → Archives go to AWS S3 under conversations/. Needs AWS creds + S3_BUCKET_NAME.
    # OFF → Archives saved to CONVERSATIONS_DIR on local disk.

    # ── Cache / Realtime ─────────────────────────────────────────────
    use_redis: bool = Field(default=False, alias="FF_USE_REDIS")
    # ON  → Redis pub/sub for session notifications. Needs REDIS_URL.
    # OFF → Notifications silently skipped. Nothing breaks.

    # ── Archive contents ─────────────────────────────────────────────
    record_audio: bool = Field(default=False, alias="FF_RECORD_AUDIO")
    # ON  → Assistant audio is kept and written as {conversation_id}_audio.wav.
    # OFF → Audio is streamed to the client only.

    mask_pii: bool = Field(default=True, alias="FF_MASK_PII")
    # ON  → Phone numbers and emails in archived text are masked.
    # OFF → Transcripts archived verbatim.

    save_extracted_data: bool = Field(default=True, alias="FF_SAVE_EXTRACTED_DATA")
    # ON  → {conversation_id}_extracted_data.json written on finalize.
    # OFF → Only conversation + summary files.

    # ── Vehicle lookup ───────────────────────────────────────────────
    use_vehicle_catalog: bool = Field(default=True, alias="FF_USE_VEHICLE_CATALOG")
    # ON  → Make/model/trim checked against the reference catalogue.
    # OFF → Only the year range is checked. Make/model accepted as spoken.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
