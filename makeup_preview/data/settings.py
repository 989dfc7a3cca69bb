# makeup_preview/data/settings.py
from pydantic import BaseModel, Field, SecretStr, AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiUrls(BaseModel):
    replicate: AnyHttpUrl = "https://api.replicate.com/v1"
    replicate_api_token: SecretStr | None = None
    # --- Vision model (OpenAI-compatible, e.g. OpenRouter) ---
    vision: AnyHttpUrl = "https://openrouter.ai/api/v1"
    vision_api_key: SecretStr | None = None


class LandmarkModelConfig(BaseModel):
    """Replicate model used by the primary landmark strategy."""
    enabled: bool = True
    version: str = "4c0b0e4d2a7b95c1d9d36a8a5b5e0a3f2c1d4e5f"
    max_polls: int = 30
    poll_interval_s: float = 1.0


class InpaintingModelConfig(BaseModel):
    """Replicate inpainting model and its generation parameters."""
    version: str = "a5b13068cc81a89a4fbeefeccc774869fcb34df4dbc92c1c9b35ac16dd4a6d46"
    num_inference_steps: int = 30
    guidance_scale: float = 7.5
    strength: float = 0.75
    scheduler: str = "K_EULER_ANCESTRAL"
    max_polls: int = 60
    poll_interval_s: float = 2.0
    request_timeout_s: int = 180


class VisionConfig(BaseModel):
    """Vision-capable model used for landmark estimation and quality judging."""
    model: str = "google/gemini-2.0-flash-001"
    temperature: float = 0.1
    max_tokens: int = 1024
    max_retries: int = 3
    timeout_s: float = 60.0


class HttpConfig(BaseModel):
    connect_timeout_s: float = 5.0
    read_timeout_s: float = 30.0
    pool_limit: int = 100


class PipelineConfig(BaseModel):
    max_attempts: int = 3
    success_threshold: float = 0.6
    degraded_threshold: float = 0.4
    confidence_floor: float = 0.4
    default_mask_size: int = 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_urls: ApiUrls = Field(default_factory=ApiUrls)
    landmark_model: LandmarkModelConfig = Field(default_factory=LandmarkModelConfig)
    inpainting_model: InpaintingModelConfig = Field(default_factory=InpaintingModelConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)

    client_concurrency_limit: int = 8
    logging_level: int = 20
    log_format: str = "auto"


settings = Settings()
