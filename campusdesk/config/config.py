import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """
    Holds settings read directly from environment variables.
    """
    # Supabase project (GoTrue + PostgREST)
    SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "http://localhost:54321")
    SUPABASE_ANON_KEY: str = os.environ.get("SUPABASE_ANON_KEY", "")

    # Direct Postgres access, only used to install constraints
    DATABASE_URL: str = os.environ.get("DATABASE_URL")

    # Redis
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL", "redis://localhost:6379/0")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL", "memory://")

    # Application tokens issued to API clients
    SECRET_KEY: str = os.environ.get("SECRET_KEY", "change-me")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")
    SESSION_TTL_SECONDS: int = int(os.environ.get("SESSION_TTL_SECONDS", 3600))

    # Timeouts
    AUTH_READY_TIMEOUT_SECONDS: float = float(os.environ.get("AUTH_READY_TIMEOUT_SECONDS", 5))
    HTTP_TIMEOUT_SECONDS: float = float(os.environ.get("HTTP_TIMEOUT_SECONDS", 30))

    # Background refresh of stored auth sessions
    SESSION_REFRESH_MARGIN_SECONDS: int = int(os.environ.get("SESSION_REFRESH_MARGIN_SECONDS", 300))
    SESSION_REFRESH_INTERVAL_MINUTES: int = int(os.environ.get("SESSION_REFRESH_INTERVAL_MINUTES", 5))

    # "Today" for student self-marking is computed in this offset
    CAMPUS_TIMEZONE_OFFSET_HOURS: int = int(os.environ.get("CAMPUS_TIMEZONE_OFFSET_HOURS", 0))

    LOG_DIR: str = os.environ.get("LOG_DIR", "logs")

# Single importable instance of the settings
settings = Config()
