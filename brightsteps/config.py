from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///data/db/brightsteps.sqlite"
    sqlite_busy_timeout_seconds: float = 30.0

    # Asset storage
    upload_dir: str = "data/uploads"
    asset_url_prefix: str = "/api/assets"
    upload_max_image_mb: int = 8
    upload_allowed_image_mime: str = "image/*"  # comma-separated patterns

    # Generation
    default_provider: str = "openai"
    default_model: str = "gpt-5-mini"
    learn_prompt_version: str = "learn-v1"
    vocab_prompt_version: str = "vocab-v1"
    generation_workers: int = 4
    generation_wait_timeout_seconds: float | None = None

    # Logging
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "BRIGHTSTEPS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def allowed_image_mime_types(self) -> list[str]:
        patterns = [p.strip() for p in self.upload_allowed_image_mime.split(",")]
        return [p for p in patterns if p] or ["image/*"]

    @property
    def upload_max_image_bytes(self) -> int:
        return self.upload_max_image_mb * 1024 * 1024

    def prompt_version_for(self, module_type: str) -> str:
        if module_type == "vocabvoice":
            return self.vocab_prompt_version
        return self.learn_prompt_version


def get_settings() -> Settings:
    return Settings()
