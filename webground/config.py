from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # SERP providers
    search_provider: str = "dataforseo"  # dataforseo | brightdata | brave
    search_fallback_provider: str = ""  # optional second provider, same choices
    dataforseo_user: str = ""
    dataforseo_pass: str = ""
    brightdata_serp_api_key: str = ""
    brightdata_serp_zone: str = ""
    brave_api_key: str = ""
    serp_max_parallel: int = 4
    serp_request_timeout_s: float = 30.0

    # Page fetch fallback chain
    use_headless_render: bool = True
    headless_render_backend: str = "service"  # service | playwright | off
    headless_render_url: str = ""  # e.g. http://localhost:3000/api/web-render
    use_reader_fallback: bool = True
    reader_base_url: str = "https://r.jina.ai/"
    brightdata_web_unlocker_api_key: str = ""
    brightdata_web_unlocker_zone: str = ""
    unlocker_endpoint: str = "https://api.brightdata.com/request"
    fetch_concurrency: int = 12

    # Caches
    cache_backend: str = "memory"  # supabase | file | memory | off
    cache_dir: str = ".cache/webground"
    serp_cache_ttl_hours: float = 24
    page_cache_ttl_hours: float = 12
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Embeddings
    embedding_backend: str = "openai"  # openai | local | off
    openai_api_key: str = ""
    openai_base_url: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_batch_size: int = 96
    embedding_max_chars: int = 5000
    local_embed_model: str = "BAAI/bge-small-en-v1.5"

    # Query planner / evidence judge (OpenAI-compatible chat endpoint)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    planner_model: str = "openai/gpt-oss-20b"
    judge_model: str = "openai/gpt-oss-20b"

    # Per-call cost rates (USD)
    serp_request_cost_usd: float = 0.002
    unlocker_request_cost_usd: float = 0.0015

    # Pipeline defaults
    pipeline_query_count: int = 2
    pipeline_serp_depth: int = 10
    pipeline_fetch_candidate_limit: int = 20
    pipeline_page_limit: int = 10
    pipeline_extra_fetch_batch_size: int = 5
    pipeline_page_timeout_ms: int = 12_000
    pipeline_page_max_bytes: int = 8 * 1024 * 1024
    pipeline_min_page_text_length: int = 2000
    pipeline_min_content_ratio: float = 0.02
    pipeline_chunk_size: int = 300
    pipeline_chunk_overlap: int = 50
    pipeline_top_k: int = 12
    pipeline_max_chunks_per_domain: int = 3
    pipeline_max_chunks_per_url: int = 2
    pipeline_min_table_list_chunks: int = 2
    pipeline_location_name: str = "United States"
    pipeline_language_code: str = "en"
    pipeline_country_code: str = "us"
    pipeline_device: str = "desktop"
    ranking_keyword_weight: float = 0.15
    ranking_kind_boost: float = 0.2
    ranking_max_embed_chunks: int = 80

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = ""  # empty disables the file sink

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
