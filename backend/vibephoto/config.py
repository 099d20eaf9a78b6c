from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./vibephoto.db"

    # Frontend (CORS origin)
    frontend_url: str = "http://localhost:3000"

    # Session secret (required: set via SESSION_SECRET env var)
    session_secret: str = ""

    # Shared key for the internal sweep trigger (X-Internal-Key header)
    internal_api_key: str = ""

    # Replicate
    replicate_api_token: str = ""
    replicate_webhook_secret: str = ""

    # Provider family selection, resolved once at startup
    image_provider: str = "replicate"
    upscale_provider: str = "replicate"
    video_provider: str = "replicate"

    image_model: str = "black-forest-labs/flux-dev"
    upscale_model: str = (
        "philz1337x/clarity-upscaler:"
        "dfad41707589d68ecdccd1dfa600d55a208f9310748e44bfe35b4a6291453d5e"
    )
    video_model: str = "kwaivgi/kling-v2.1-master"

    provider_submit_timeout: float = 60.0
    provider_poll_timeout: float = 30.0

    # Public https base URL used to build webhook callbacks.  Webhooks are
    # only requested when this is an https URL; otherwise the sweeper is the
    # sole delivery path.
    public_base_url: str = ""

    # Durable storage: "local" or "s3"
    storage_backend: str = "local"
    storage_path: str = "./storage"
    media_base_url: str = "http://localhost:8000"

    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    s3_endpoint_url: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_public_base_url: str = ""

    # Result migration
    migration_fetch_timeout: float = 60.0
    migration_attempts: int = 3
    migration_backoff_seconds: float = 1.0
    thumbnail_max_size: int = 512

    # Polling sweeper
    sweep_min_age_seconds: int = 60
    sweep_image_batch_size: int = 20
    sweep_upscale_batch_size: int = 20
    sweep_video_batch_size: int = 10
    sweep_request_delay_seconds: float = 0.1
    job_timeout_seconds: int = 3600

    log_level: str = "INFO"

    model_config = {"env_file": ".env"}


settings = Settings()
