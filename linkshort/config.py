from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str
    REDIS_URL: str
    ENVIRONMENT: str = "development"
    BASE_URL: str = "http://localhost:8000"
    LOG_LEVEL: str = "INFO"

    CACHE_TTL_SECONDS: int = 86400
    CACHE_KEY_PREFIX: str = "url:"
    # Second invalidation after a delete, catches cache fills already in flight
    CACHE_REINVALIDATE_DELAY_SECONDS: float = 1.0

    SHORT_CODE_LENGTH: int = 8
    SHORT_CODE_MAX_ATTEMPTS: int = 5

    # DB-IP style csv: start_ip,end_ip,country
    IP_COUNTRY_DB_PATH: Optional[str] = None

    BACKGROUND_DRAIN_TIMEOUT: float = 5.0

    class Config:
        env_file = ".env"

settings = Settings()
