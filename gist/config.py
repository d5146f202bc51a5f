from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Gist"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database: SQLite by default, same file the feed reader uses
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/gist.db"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    # Scheduled feed refresh
    REFRESH_ENABLED: bool = True
    REFRESH_INTERVAL_SECONDS: int = 15 * 60
    REFRESH_TIMEOUT_SECONDS: int = 5 * 60  # Hard deadline per cycle
    REFRESH_CONCURRENCY: int = 4  # Parallel readability fetches per cycle

    # Outbound fetching
    FETCH_TIMEOUT_SECONDS: int = 30
    IMPERSONATE_PROFILE: str = "chrome131"  # curl_cffi TLS fingerprint
    CHROME_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )
    ACCEPT_LANGUAGE: str = "en-US,en;q=0.9"

    # Proof-of-work challenges
    CHALLENGE_COOKIE_TTL_SECONDS: int = 3600  # When the server gives no expiry
    CHALLENGE_MAX_DIFFICULTY: int = 8  # Leading zero hex digits
    CHALLENGE_MAX_ITERATIONS: int = 50_000_000

    # Thread pool for CPU-bound sanitize/extract
    EXTRACTION_WORKERS: int = 4

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
