import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'smartmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    TITLE_FETCH_TIMEOUT = float(os.environ.get("TITLE_FETCH_TIMEOUT", "5"))
    TITLE_FETCH_MAX_BYTES = int(os.environ.get("TITLE_FETCH_MAX_BYTES", "500000"))

    OAUTH_PROVIDER = os.environ.get("OAUTH_PROVIDER", "google")
    OAUTH_CLIENT_ID = os.environ.get("OAUTH_CLIENT_ID", "")
    OAUTH_CLIENT_SECRET = os.environ.get("OAUTH_CLIENT_SECRET", "")
    OAUTH_AUTHORIZE_URL = os.environ.get(
        "OAUTH_AUTHORIZE_URL", "https://accounts.google.com/o/oauth2/v2/auth"
    )
    OAUTH_TOKEN_URL = os.environ.get(
        "OAUTH_TOKEN_URL", "https://oauth2.googleapis.com/token"
    )
    OAUTH_USERINFO_URL = os.environ.get(
        "OAUTH_USERINFO_URL", "https://openidconnect.googleapis.com/v1/userinfo"
    )
    OAUTH_SCOPE = os.environ.get("OAUTH_SCOPE", "openid email profile")
    OAUTH_STATE_TTL_SECONDS = int(os.environ.get("OAUTH_STATE_TTL_SECONDS", "600"))
    POST_LOGIN_REDIRECT = os.environ.get("POST_LOGIN_REDIRECT", "/api/v1/me")

    CHANGE_STREAM_KEEPALIVE_SECONDS = float(
        os.environ.get("CHANGE_STREAM_KEEPALIVE_SECONDS", "15")
    )
    CHANGE_EVENT_RETENTION_HOURS = int(
        os.environ.get("CHANGE_EVENT_RETENTION_HOURS", "72")
    )
    CHANGE_PRUNE_INTERVAL_MINUTES = int(
        os.environ.get("CHANGE_PRUNE_INTERVAL_MINUTES", "60")
    )
    CHANGES_PAGE_LIMIT = int(os.environ.get("CHANGES_PAGE_LIMIT", "200"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    OAUTH_CLIENT_ID = "test-client"
    OAUTH_CLIENT_SECRET = "test-secret"
    CHANGE_STREAM_KEEPALIVE_SECONDS = 0.05
