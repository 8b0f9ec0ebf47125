"""Environment-based configuration for the document intelligence pipeline."""

import logging

from pydantic_settings import BaseSettings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Pipeline settings, loaded from environment variables."""

    # Active adapters (comma-separated identifiers)
    OCR_PROVIDERS: str = "aws-textract,google-vision,azure-read"
    AI_MODELS: str = "gpt-4o-mini,claude-3-5-haiku,gemini-2.5-flash"

    # AWS Textract (empty = provider not configured)
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"

    # Google Cloud Vision
    GOOGLE_CLOUD_VISION_API_KEY: str = ""
    GOOGLE_VISION_URL: str = "https://vision.googleapis.com/v1/images:annotate"

    # Azure Computer Vision Read API
    AZURE_COMPUTER_VISION_KEY: str = ""
    AZURE_COMPUTER_VISION_ENDPOINT: str = ""

    # AI extraction models
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"

    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com/v1"
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-20241022"

    GOOGLE_AI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_MODEL: str = "gemini-2.5-flash"

    OLLAMA_URL: str = ""  # Empty = local model disabled
    OLLAMA_MODEL: str = "llama3.1"

    # Timeouts (seconds)
    HTTP_TIMEOUT_SECONDS: float = 60.0
    HTTP_CONNECT_TIMEOUT: float = 10.0

    # Retry and polling ("time unit" = seconds)
    RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0
    OCR_POLL_INTERVAL: float = 1.0
    OCR_POLL_MAX_ATTEMPTS: int = 30

    # Consensus
    CONSENSUS_NUMERIC_TOLERANCE: float = 0.01

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": True}

    @property
    def ocr_provider_list(self) -> list[str]:
        return _split(self.OCR_PROVIDERS)

    @property
    def ai_model_list(self) -> list[str]:
        return _split(self.AI_MODELS)


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def configure_logging(level: str | None = None) -> None:
    """Apply the service log format to the root logger."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )


settings = Settings()
