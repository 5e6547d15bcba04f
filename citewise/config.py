from pydantic_settings import BaseSettings

from citewise.models.search import OptimizationMode

DEFAULT_MODE_PROVIDERS = {
    OptimizationMode.SPEED: "searxng",
    OptimizationMode.BALANCED: "searxng,tavily,bocha",
    OptimizationMode.QUALITY: "searxng,tavily,bocha",
}


class Settings(BaseSettings):
    # OpenRouter / OpenAI-compatible LLM
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o-mini"
    rephraser_model: str = ""  # optional override for query rephrasing only
    rephraser_max_tokens: int = 512
    synthesis_max_tokens: int = 4096

    # Search providers
    searxng_api_url: str = ""  # self-hosted, e.g. http://localhost:8080
    tavily_api_key: str = ""
    bocha_api_key: str = ""
    search_mode_speed: str = DEFAULT_MODE_PROVIDERS[OptimizationMode.SPEED]
    search_mode_balanced: str = DEFAULT_MODE_PROVIDERS[OptimizationMode.BALANCED]
    search_mode_quality: str = DEFAULT_MODE_PROVIDERS[OptimizationMode.QUALITY]
    search_max_results_per_provider: int = 10
    search_provider_timeout_seconds: float = 15.0
    search_retry_max: int = 1
    search_max_parallel_requests: int = 4

    # Content extraction
    extraction_method: str = "local"  # local | crawl4ai
    crawl4ai_api_url: str = ""
    crawl4ai_api_key: str = ""
    crawl4ai_timeout_seconds: int = 30
    extract_timeout_seconds: float = 30.0
    extract_max_parallel_requests: int = 6
    extract_max_urls: int = 8
    extractor_max_page_chars: int = 120000
    extract_user_agent: str = "Mozilla/5.0 (compatible; Citewise/1.0)"

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 200

    # Embeddings / rerank
    embedding_backend: str = "ollama"  # ollama | local | none
    ollama_api_url: str = "http://localhost:11434"
    rerank_model: str = "bge-m3"
    local_embed_model: str = "bge-small-en-v1.5"
    embedding_timeout_seconds: float = 30.0
    embedding_max_parallel_requests: int = 4
    rerank_fallback_score: float = 0.1
    rerank_top_k: int = 15

    # Synthesis
    synthesis_context_char_budget: int = 45000

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_to_file: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    def providers_for_mode(self, mode: OptimizationMode | str) -> list[str]:
        """Ordered provider ids configured for an optimization mode."""
        mode = OptimizationMode(mode)
        raw = {
            OptimizationMode.SPEED: self.search_mode_speed,
            OptimizationMode.BALANCED: self.search_mode_balanced,
            OptimizationMode.QUALITY: self.search_mode_quality,
        }[mode]
        providers: list[str] = []
        for item in raw.split(","):
            name = item.strip().lower()
            if name and name not in providers:
                providers.append(name)
        return providers


settings = Settings()
