import os

from dotenv import load_dotenv


load_dotenv()



def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

GOOGLE_OAUTH_CLIENT_ID = os.getenv("GOOGLE_OAUTH_CLIENT_ID", "")
GOOGLE_OAUTH_CLIENT_SECRET = os.getenv("GOOGLE_OAUTH_CLIENT_SECRET", "")
GOOGLE_OAUTH_REDIRECT_URL = os.getenv("GOOGLE_OAUTH_REDIRECT_URL", "http://localhost:8000/auth/callback")
GOOGLE_OAUTH_AUTHORIZE_URL = os.getenv("GOOGLE_OAUTH_AUTHORIZE_URL", "https://accounts.google.com/o/oauth2/v2/auth")
GOOGLE_OAUTH_TOKEN_URL = os.getenv("GOOGLE_OAUTH_TOKEN_URL", "https://oauth2.googleapis.com/token")
GOOGLE_OAUTH_USERINFO_URL = os.getenv("GOOGLE_OAUTH_USERINFO_URL", "https://openidconnect.googleapis.com/v1/userinfo")

FRONTEND_AUTH_REDIRECT_URL = os.getenv("FRONTEND_AUTH_REDIRECT_URL", "")

GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
GOOGLE_PLACES_BASE_URL = os.getenv("GOOGLE_PLACES_BASE_URL", "https://maps.googleapis.com/maps/api/place")
GOOGLE_PLACES_TIMEOUT_SECONDS = float(os.getenv("GOOGLE_PLACES_TIMEOUT_SECONDS", "8"))

AUTO_CANCEL_GRACE_MINUTES = int(os.getenv("AUTO_CANCEL_GRACE_MINUTES", "15"))
CANCELLATION_FEE_RATE = float(os.getenv("CANCELLATION_FEE_RATE", "0.05"))
CRON_SECRET = os.getenv("CRON_SECRET", "")

REALTIME_RECONNECT_DELAY_SECONDS = float(os.getenv("REALTIME_RECONNECT_DELAY_SECONDS", "5"))
REALTIME_QUEUE_SIZE = int(os.getenv("REALTIME_QUEUE_SIZE", "100"))

ONBOARDING_BUFFER_PATH = os.getenv("ONBOARDING_BUFFER_PATH", "./onboarding_buffer.jsonl")

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if APP_ENV.lower() == "production" and not CRON_SECRET:
        raise RuntimeError("CRON_SECRET must be set in production.")
