import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chirp.api import auth
from chirp.config import DEFAULT_ACCESS_SECRET, DEFAULT_REFRESH_SECRET, settings
from chirp.db_init import init_db
from chirp.errors import register_exception_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("chirp.startup")


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def _get_cors_origins(cors_raw: str) -> list[str]:
    return [origin.strip() for origin in cors_raw.split(",") if origin.strip()]


def _validate_database_url_for_runtime(database_url: str) -> None:
    parsed = urlparse(database_url)
    scheme = parsed.scheme
    postgres_schemes = {"postgres", "postgresql", "postgresql+psycopg"}

    if not scheme:
        raise RuntimeError("DATABASE_URL is missing URL scheme (expected postgresql:// or sqlite://).")
    if scheme == "sqlite":
        return
    if scheme not in postgres_schemes:
        raise RuntimeError(
            f"DATABASE_URL has unsupported scheme '{scheme}' "
            "(expected postgresql://, postgresql+psycopg:// or sqlite://)."
        )
    if not parsed.hostname:
        raise RuntimeError("DATABASE_URL is missing host.")
    if not parsed.path.lstrip("/"):
        raise RuntimeError("DATABASE_URL is missing database name in path.")


def _validate_required_env_for_runtime() -> None:
    errors = []
    production = settings.APP_ENV == "production"

    access_secret = settings.JWT_ACCESS_SECRET.strip()
    refresh_secret = settings.JWT_REFRESH_SECRET.strip()
    if not access_secret or not refresh_secret:
        errors.append("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET are required.")
    elif production:
        if access_secret == DEFAULT_ACCESS_SECRET or refresh_secret == DEFAULT_REFRESH_SECRET:
            errors.append("JWT secrets use insecure default values in production.")
        if access_secret == refresh_secret:
            errors.append("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ.")

    if settings.BCRYPT_ROUNDS < 4 or settings.BCRYPT_ROUNDS > 31:
        errors.append("BCRYPT_ROUNDS must be between 4 and 31.")
    elif production and settings.BCRYPT_ROUNDS < 10:
        errors.append("BCRYPT_ROUNDS below 10 is not allowed in production.")

    invalid_origins = [
        origin for origin in _get_cors_origins(settings.CORS_ORIGINS) if not _is_http_url(origin)
    ]
    if invalid_origins:
        errors.append(f"CORS_ORIGINS contains invalid URL(s): {', '.join(invalid_origins)}")

    if not settings.SMTP_HOST:
        logger.warning("SMTP_HOST is not set; account emails will not be delivered.")

    if errors:
        raise RuntimeError("Startup environment validation failed: " + " | ".join(errors))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup initiated.")
    try:
        _validate_database_url_for_runtime(settings.DATABASE_URL)
        _validate_required_env_for_runtime()
        init_db()
    except Exception as exc:
        logger.exception("Startup failed: %s", exc)
        raise
    logger.info("Application startup completed successfully.")
    yield


app = FastAPI(
    title="Chirp Auth API",
    description=(
        "Registration, login, password reset and session tokens for Chirp. "
        "Use **Authorize** with the access token from `POST /api/auth/login`."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Auth", "description": "Accounts, sessions and password reset (JWT)."},
    ],
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(settings.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])


@app.get("/")
def root():
    return {"status": "ok", "service": "Chirp Auth API"}


@app.get("/health")
def health():
    return {"status": "ok"}
