from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    APP_NAME: str = "Activity Overview"
    DEBUG: bool = False
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/overview.db"
    SESSION_SECRET: str = "change-me"

    # LLM provider: supports ollama | openai | groq
    LLM_PROVIDER: str = "ollama"
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.2:3b"
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    GROQ_API_KEY: str = ""
    GROQ_MODEL: str = "llama-3.1-8b-instant"
    GENERATION_TIMEOUT_SECONDS: float = 15.0

    OVERVIEW_CACHE_TTL_MINUTES: int = 60
    OVERVIEW_TIMEFRAMES: list[int] = [1, 7, 14, 28]
    MAX_LOG_ENTRIES: int = 200
    MAX_PROMPT_ENTRIES: int = 50
    HIGHLIGHT_CHARACTER_LIMIT: int = 400
    COMPANY_GENERAL_LABEL: str = "Company General"
    RESTRICT_METADATA_LABELS: bool = True


settings = Settings()
