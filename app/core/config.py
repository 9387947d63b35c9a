import os


class ConfigError(RuntimeError):
    pass


def get_secret(secret_name: str) -> str | None:
    secret_path = f'/run/secrets/{secret_name}'
    try:
        with open(secret_path, 'r', encoding='utf-8') as secret_file:
            return secret_file.read().strip()
    except IOError:
        return os.getenv(secret_name)


DB_PASSWORD = get_secret('db_password')
SECRET_KEY = get_secret('secret_key')
STRIPE_SECRET_KEY = get_secret('stripe_secret_key')
STRIPE_WEBHOOK_SECRET = get_secret('stripe_webhook_secret')

POSTGRES_DB = os.getenv("POSTGRES_DB")
POSTGRES_USER = os.getenv("POSTGRES_USER")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

if POSTGRES_USER and DB_PASSWORD and POSTGRES_DB:
    DATABASE_URL = f"postgresql+asyncpg://{POSTGRES_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{POSTGRES_DB}"
else:
    DATABASE_URL = os.getenv("DATABASE_URL")
    if not DATABASE_URL:
        raise ConfigError("Can't build DATABASE_URL")

ALGORITHM = "HS256"
JWT_ISSUER = os.getenv("JWT_ISSUER", "events-api")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "events-web")

# unpaid reservations hold capacity for this long before the expiry sweep releases them
RESERVATION_MINUTES = int(os.getenv("RESERVATION_MINUTES", "15"))
# basis points of the gross amount kept by the platform
PLATFORM_FEE_BPS = int(os.getenv("PLATFORM_FEE_BPS", "500"))
CURRENCY = os.getenv("CURRENCY", "gbp")

STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION")
STRIPE_MAX_RETRIES = int(os.getenv("STRIPE_MAX_RETRIES", "2"))
WEBHOOK_DEDUP_TTL_SECONDS = int(os.getenv("WEBHOOK_DEDUP_TTL_SECONDS", str(7 * 24 * 3600)))

AUDIT_STREAM = os.getenv("AUDIT_STREAM", "audit:registrations")
AUDIT_STREAM_MAXLEN = int(os.getenv("AUDIT_STREAM_MAXLEN", "100000"))

EXPIRY_INTERVAL_SECONDS = int(os.getenv("EXPIRY_INTERVAL_SECONDS", "60"))
EXPIRY_BATCH = int(os.getenv("EXPIRY_BATCH", "500"))
