from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "API_KEY"),
    )
    gemini_text_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_TEXT_MODEL")
    gemini_image_model: str = Field(default="gemini-2.5-flash-image", validation_alias="GEMINI_IMAGE_MODEL")
    gemini_image_aspect_ratio: str = Field(default="1:1", validation_alias="GEMINI_IMAGE_ASPECT_RATIO")

    retry_max_attempts: int = Field(default=3, ge=1, validation_alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=2.0, ge=0, validation_alias="RETRY_BASE_DELAY_SECONDS")
    retry_max_jitter_seconds: float = Field(default=1.0, ge=0, validation_alias="RETRY_MAX_JITTER_SECONDS")

    inter_scene_delay_seconds: float = Field(default=1.0, ge=0, validation_alias="INTER_SCENE_DELAY_SECONDS")
    # Number of scene images requested at once. Kept at 1 to stay under the API rate limits.
    generation_concurrency: int = Field(default=1, ge=1, validation_alias="GENERATION_CONCURRENCY")
    translate_image_prompts: bool = Field(default=True, validation_alias="TRANSLATE_IMAGE_PROMPTS")

    analysis_min_scenes: int = Field(default=7, ge=1, validation_alias="ANALYSIS_MIN_SCENES")
    analysis_max_scenes: int = Field(default=9, ge=1, validation_alias="ANALYSIS_MAX_SCENES")

    print_delay_ms: int = Field(default=1000, ge=0, validation_alias="PRINT_DELAY_MS")


settings = Settings()
