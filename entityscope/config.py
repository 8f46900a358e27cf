from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Search provider
    search_provider: str = "google"  # google | jina | tavily
    google_api_key: str = ""
    google_search_engine_id: str = ""
    jina_api_key: str = ""
    tavily_api_key: str = ""
    search_max_queries: int = 6
    search_max_results_per_query: int = 5

    # Shared outbound budget for search, fetch and extraction calls
    max_in_flight_requests: int = 3

    # Fetcher
    fetch_timeout_seconds: float = 10.0
    fetch_min_content_chars: int = 200

    # Extraction
    extract_min_content_chars: int = 50
    extract_max_content_chars: int = 8000
    query_planner: str = "template"  # template | llm

    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o-mini"
    openrouter_model: str = ""

    # Verification
    verify_min_score: float = 0.5

    # URL fact table (empty = bundled table)
    url_facts_path: str = ""

    # Registry / progressive disambiguation
    npi_registry_base_url: str = "https://npiregistry.cms.hhs.gov/api/"
    npi_registry_limit: int = 200
    disambiguation_max_choices: int = 10

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
