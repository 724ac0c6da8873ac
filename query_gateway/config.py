from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # MongoDB Configuration
    mongodb_uri: str
    database_name: str = "nlq_gateway"
    audit_collection: str = "auditlogs"
    explanation_collection: str = "queryexplanations"

    # Identity Configuration
    jwt_secret: str
    jwt_algorithm: str = "HS256"

    # Permission cache
    permission_cache_size: int = 500
    permission_cache_ttl_seconds: float = 15 * 60

    # Soft timeouts leave downstream work running; set to cancel it instead
    cancel_on_timeout: bool = False

    # LLM Provider Selection
    llm_provider: str = "none"  # Options: none, openai, gemini, local, huggingface

    # OpenAI Configuration
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Google Gemini Configuration
    google_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash-lite"

    # Hugging Face Configuration
    huggingface_api_key: Optional[str] = None
    huggingface_model: str = "openai/gpt-oss-120b"

    # Local LLM Configuration
    local_llm_base_url: str = "http://localhost:1234/v1"
    local_llm_model: str = "google/gemma-3-27b"

    # Service Configuration
    port: int = 8000
    max_query_length: int = 5000
    default_result_limit: int = 100
    log_level: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

# Global settings instance
settings = Settings()
