from __future__ import annotations

import secrets
from urllib.parse import urlencode

import httpx
from itsdangerous import BadData, URLSafeTimedSerializer

from app.extensions import db
from app.models import User


class OAuthError(Exception):
    pass


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret_key, salt="oauth-state")


def create_state(secret_key: str) -> str:
    return _serializer(secret_key).dumps({"nonce": secrets.token_urlsafe(16)})


def verify_state(secret_key: str, state: str, expected: str | None, max_age: int) -> bool:
    if not state or not expected or state != expected:
        return False
    try:
        _serializer(secret_key).loads(state, max_age=max_age)
    except BadData:
        return False
    return True


def build_authorize_url(config, redirect_uri: str, state: str) -> str:
    params = {
        "client_id": config["OAUTH_CLIENT_ID"],
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": config["OAUTH_SCOPE"],
        "state": state,
    }
    return f"{config['OAUTH_AUTHORIZE_URL']}?{urlencode(params)}"


def exchange_code(config, code: str, redirect_uri: str) -> str:
    try:
        response = httpx.post(
            config["OAUTH_TOKEN_URL"],
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": config["OAUTH_CLIENT_ID"],
                "client_secret": config["OAUTH_CLIENT_SECRET"],
            },
            headers={"Accept": "application/json"},
            timeout=10,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise OAuthError(f"token exchange failed: {exc}") from exc

    access_token = response.json().get("access_token")
    if not access_token:
        raise OAuthError("token exchange returned no access_token")
    return access_token


def fetch_userinfo(config, access_token: str) -> dict:
    try:
        response = httpx.get(
            config["OAUTH_USERINFO_URL"],
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=10,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise OAuthError(f"userinfo request failed: {exc}") from exc
    return response.json()


def upsert_user(provider: str, userinfo: dict) -> User:
    subject = str(userinfo.get("sub") or userinfo.get("id") or "").strip()
    if not subject:
        raise OAuthError("userinfo has no subject")

    user = User.query.filter_by(provider=provider, subject=subject).first()
    if not user:
        user = User(provider=provider, subject=subject, is_active=True)
        db.session.add(user)
    user.email = userinfo.get("email") or user.email
    user.display_name = (
        userinfo.get("name") or userinfo.get("login") or user.display_name
    )
    user.avatar_url = (
        userinfo.get("picture") or userinfo.get("avatar_url") or user.avatar_url
    )
    db.session.commit()
    return user
