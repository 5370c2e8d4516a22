from pydantic_settings import BaseSettings

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    # OpenAI-compatible LLM (optional; Stage 3 only runs when enabled)
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "openai/gpt-4o-mini"
    use_llm: bool = False
    llm_timeout_seconds: float = 60.0
    llm_max_tokens: int = 2000
    llm_temperature: float = 0.1
    forced_max_tokens: int = 3000
    forced_temperature: float = 0.3

    # Optional collaborators
    flaresolverr_url: str = ""  # e.g. http://localhost:8191/v1
    crawl4ai_base_url: str = ""  # e.g. http://127.0.0.1:11235

    # Transport deadlines (short -> long in escalation order)
    http_timeout_seconds: float = 20.0
    flaresolverr_timeout_seconds: float = 60.0
    browser_timeout_seconds: float = 90.0
    crawl4ai_timeout_seconds: float = 120.0
    browser_headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT

    # Agent / pipeline bounds
    agent_max_iterations: int = 5
    fallback_text_chars: int = 5000
    max_crawl_candidates: int = 20
    max_crawl_pages: int = 100
    max_products: int = 100
    max_assets: int = 50
    max_parallel_urls: int = 4

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = True
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def llm_configured(self) -> bool:
        return bool(self.llm_api_key.strip())


settings = Settings()
