import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_ACCESS_SECRET = "change-me-access-secret"
DEFAULT_REFRESH_SECRET = "change-me-refresh-secret"


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @staticmethod
    def _get_bool(name: str, default: bool) -> bool:
        value = os.getenv(name)
        if value is None:
            return default
        return value.strip().lower() in {"1", "true", "yes", "on"}

    @property
    def APP_ENV(self) -> str:
        return os.getenv("APP_ENV", "development").strip().lower()

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def JWT_ACCESS_SECRET(self) -> str:
        return os.getenv("JWT_ACCESS_SECRET", DEFAULT_ACCESS_SECRET)

    @property
    def JWT_REFRESH_SECRET(self) -> str:
        return os.getenv("JWT_REFRESH_SECRET", DEFAULT_REFRESH_SECRET)

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def JWT_ACCESS_EXPIRE_MINUTES(self) -> int:
        return self._get_int("JWT_ACCESS_EXPIRE_MINUTES", 15)

    @property
    def JWT_REFRESH_EXPIRE_DAYS(self) -> int:
        return self._get_int("JWT_REFRESH_EXPIRE_DAYS", 7)

    @property
    def JWT_ISSUER(self) -> str:
        return os.getenv("JWT_ISSUER", "chirp-api")

    @property
    def JWT_AUDIENCE(self) -> str:
        return os.getenv("JWT_AUDIENCE", "chirp-users")

    @property
    def BCRYPT_ROUNDS(self) -> int:
        return self._get_int("BCRYPT_ROUNDS", 12)

    @property
    def OTP_EXPIRE_MINUTES(self) -> int:
        return self._get_int("OTP_EXPIRE_MINUTES", 10)

    @property
    def RATE_LIMIT_ENABLED(self) -> bool:
        return self._get_bool("RATE_LIMIT_ENABLED", True)

    @property
    def RATE_LIMIT_WINDOW_SECONDS(self) -> int:
        return self._get_int("RATE_LIMIT_WINDOW_SECONDS", 15 * 60)

    @property
    def SMTP_HOST(self) -> str:
        return os.getenv("SMTP_HOST", "")

    @property
    def SMTP_PORT(self) -> int:
        return self._get_int("SMTP_PORT", 587)

    @property
    def SMTP_USER(self) -> str:
        return os.getenv("SMTP_USER", "")

    @property
    def SMTP_PASSWORD(self) -> str:
        return os.getenv("SMTP_PASSWORD", "")

    @property
    def SMTP_FROM_EMAIL(self) -> str:
        return os.getenv("SMTP_FROM_EMAIL", "")

    @property
    def SMTP_FROM_NAME(self) -> str:
        return os.getenv("SMTP_FROM_NAME", "Chirp")

    @property
    def SMTP_USE_TLS(self) -> bool:
        return self._get_bool("SMTP_USE_TLS", True)

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 5)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"


settings = Settings()

# Validate critical settings
if settings.JWT_ACCESS_SECRET == DEFAULT_ACCESS_SECRET or settings.JWT_REFRESH_SECRET == DEFAULT_REFRESH_SECRET:
    import warnings
    warnings.warn("JWT secrets are using default values. Change them in production!", UserWarning)
