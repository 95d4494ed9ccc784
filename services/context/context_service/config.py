from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    context_api_key: str = ""
    log_level: str = "info"
    default_model: str = "gpt-3.5-turbo"

    # Segmentation defaults (tokens)
    default_max_chunk_size: int = 512
    default_overlap_size: int = 50

    # Assembly defaults
    default_max_context_tokens: int = 4096
    preserve_recent_messages: int = 2
    response_reserve_tokens: int = 500

    # Strategy thresholds: overage ratio = estimated tokens / budget
    filtering_overage_ratio: float = 1.2
    hybrid_overage_ratio: float = 1.5
    truncation_overage_ratio: float = 2.0
    hybrid_fragment_fraction: float = 0.3

    quiet_access_paths: list[str] = ["/health"]

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
