from flask import current_app, jsonify, redirect, request, session, url_for
from flask_login import current_user, login_required, login_user, logout_user

from app.auth import auth_bp
from app.services.oauth import (
    OAuthError,
    build_authorize_url,
    create_state,
    exchange_code,
    fetch_userinfo,
    upsert_user,
    verify_state,
)


def _callback_url() -> str:
    return url_for("auth.oauth_callback", _external=True)


@auth_bp.route("/login")
def login():
    if current_user.is_authenticated:
        return redirect(current_app.config["POST_LOGIN_REDIRECT"])

    state = create_state(current_app.config["SECRET_KEY"])
    session["oauth_state"] = state
    return redirect(build_authorize_url(current_app.config, _callback_url(), state))


@auth_bp.route("/auth/callback")
def oauth_callback():
    config = current_app.config
    expected_state = session.pop("oauth_state", None)
    if not verify_state(
        config["SECRET_KEY"],
        request.args.get("state", ""),
        expected_state,
        max_age=config["OAUTH_STATE_TTL_SECONDS"],
    ):
        return jsonify({"error": "invalid oauth state"}), 400

    if request.args.get("error"):
        return jsonify({"error": request.args.get("error")}), 400

    code = request.args.get("code")
    if not code:
        return jsonify({"error": "authorization code is required"}), 400

    try:
        access_token = exchange_code(config, code, _callback_url())
        userinfo = fetch_userinfo(config, access_token)
        user = upsert_user(config["OAUTH_PROVIDER"], userinfo)
    except OAuthError as exc:
        current_app.logger.warning("OAuth sign-in failed: %s", exc)
        return jsonify({"error": "sign-in failed"}), 502

    if not user.is_active:
        return jsonify({"error": "account disabled"}), 403

    login_user(user)
    return redirect(config["POST_LOGIN_REDIRECT"])


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return redirect(url_for("auth.login"))
