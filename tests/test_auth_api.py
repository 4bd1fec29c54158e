"""End-to-end tests for the /api/auth routes."""

from __future__ import annotations

from conftest import cookie_value, link_params, set_cookies

from app.core.config import get_settings


def _login(client, notifier, email: str = "user@example.com") -> dict:
    response = client.post("/api/auth/login", json={"email": email})
    assert response.status_code == 200
    return response.json()


def _verify_code(client, email: str, code: str, remember_me: bool = False):
    return client.post("/api/auth/verify-code", json={"email": email, "code": code, "rememberMe": remember_me})


def _cookie_path(header: str) -> str | None:
    for part in header.split(";"):
        name, _, value = part.strip().partition("=")
        if name.lower() == "path":
            return value
    return None


def _signed_in(client, notifier, remember_me: bool = False) -> tuple[str, str]:
    body = _login(client, notifier)
    response = _verify_code(client, "user@example.com", body["code"], remember_me=remember_me)
    assert response.status_code == 200
    return cookie_value(response, "access_token"), cookie_value(response, "refresh_token")


def test_root_and_health(client) -> None:
    assert client.get("/").json() == {"status": "ok"}
    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert health["database"] == "ok"
    assert health["service"] == "auth-api"


def test_login_returns_code_and_sends_email(client, notifier) -> None:
    response = client.post("/api/auth/login", json={"email": "User@Example.com", "rememberMe": True})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Magic link sent to your email"
    assert body["email"] == "user@example.com"
    assert len(body["code"]) == 6
    assert notifier.login_emails[-1]["code"] == body["code"]


def test_login_rejects_invalid_email(client, notifier) -> None:
    response = client.post("/api/auth/login", json={"email": "not-an-email"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid email address"
    assert notifier.login_emails == []


def test_login_reports_delivery_failure(client, notifier) -> None:
    notifier.fail_login = True

    response = client.post("/api/auth/login", json={"email": "user@example.com"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Failed to send magic link email"


def test_code_login_scenario(client, notifier) -> None:
    body = _login(client, notifier)

    response = _verify_code(client, "user@example.com", body["code"])

    assert response.status_code == 200
    payload = response.json()
    assert payload["message"] == "Login successful"
    assert payload["user"]["email"] == "user@example.com"
    assert payload["user"]["email_verified"] is True
    assert cookie_value(response, "access_token")
    assert cookie_value(response, "refresh_token")
    assert notifier.welcome_emails == ["user@example.com"]

    again = _verify_code(client, "user@example.com", body["code"])
    assert again.status_code == 400
    assert again.json()["detail"] == "Invalid or expired code"


def test_verify_code_rejects_malformed_code(client, notifier) -> None:
    _login(client, notifier)

    response = _verify_code(client, "user@example.com", "12ab56")

    assert response.status_code == 400
    assert response.json()["detail"] == "Code must be exactly 6 digits"


def test_link_login_sets_cookies(client, notifier) -> None:
    _login(client, notifier)
    token = link_params(notifier.login_emails[-1]["link"])["token"]

    response = client.get("/api/auth/verify", params={"token": token})

    assert response.status_code == 200
    assert response.json()["user"]["email"] == "user@example.com"
    cookies = set_cookies(response)
    access = cookies["access_token"].lower()
    refresh = cookies["refresh_token"].lower()
    assert "httponly" in access and "samesite=lax" in access and "path=/" in access
    assert _cookie_path(cookies["refresh_token"]) == "/api/auth" and "httponly" in refresh
    # Browser-session cookies unless remember-me was asked for
    assert "max-age" not in access and "max-age" not in refresh
    assert "secure" not in access

    reuse = client.get("/api/auth/verify", params={"token": token})
    assert reuse.status_code == 400
    assert reuse.json()["detail"] == "Invalid or expired token"


def test_remember_me_sets_cookie_lifetimes(client, notifier) -> None:
    _login(client, notifier)
    token = link_params(notifier.login_emails[-1]["link"])["token"]

    response = client.get("/api/auth/verify", params={"token": token, "rememberMe": "true"})

    cookies = set_cookies(response)
    assert "max-age=900" in cookies["access_token"].lower()
    assert "max-age=2592000" in cookies["refresh_token"].lower()


def test_verify_requires_token(client) -> None:
    response = client.get("/api/auth/verify")

    assert response.status_code == 400
    assert response.json()["detail"] == "Token is required"


def test_me_with_bearer_header_and_cookie(client, notifier) -> None:
    access, _ = _signed_in(client, notifier)

    by_header = client.get("/api/auth/me", headers={"Authorization": f"Bearer {access}"})
    by_cookie = client.get("/api/auth/me", headers={"Cookie": f"access_token={access}"})

    assert by_header.status_code == 200
    assert by_header.json()["email"] == "user@example.com"
    assert by_cookie.status_code == 200
    assert by_cookie.json()["id"] == by_header.json()["id"]


def test_me_requires_credentials(client) -> None:
    missing = client.get("/api/auth/me")
    invalid = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})

    assert missing.status_code == 401
    assert missing.json()["detail"] == "Access token required"
    assert invalid.status_code == 401
    assert invalid.json()["detail"] == "Invalid or expired token"


def test_access_token_expires_after_fifteen_minutes(client, notifier, clock) -> None:
    access, _ = _signed_in(client, notifier)

    clock.advance(minutes=15)

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {access}"})
    assert response.status_code == 401


def test_status_uses_optional_auth(client, notifier) -> None:
    anonymous = client.get("/api/auth/status")
    bad = client.get("/api/auth/status", headers={"Authorization": "Bearer nope"})
    access, _ = _signed_in(client, notifier)
    signed_in = client.get("/api/auth/status", headers={"Authorization": f"Bearer {access}"})

    assert anonymous.json() == {"authenticated": False, "user": None}
    assert bad.status_code == 200 and bad.json()["authenticated"] is False
    assert signed_in.json()["authenticated"] is True
    assert signed_in.json()["user"]["email"] == "user@example.com"


def test_refresh_rotation_scenario(client, notifier) -> None:
    _, refresh = _signed_in(client, notifier, remember_me=True)

    rotated = client.post("/api/auth/refresh", headers={"Cookie": f"refresh_token={refresh}"})

    assert rotated.status_code == 200
    assert rotated.json() == {"message": "Token refreshed successfully"}
    new_refresh = cookie_value(rotated, "refresh_token")
    assert new_refresh and new_refresh != refresh
    # Remember-me survives the rotation
    assert "max-age=2592000" in set_cookies(rotated)["refresh_token"].lower()

    replay = client.post("/api/auth/refresh", headers={"Cookie": f"refresh_token={refresh}"})
    assert replay.status_code == 401
    assert replay.json()["detail"] == "Session not found"

    again = client.post("/api/auth/refresh", headers={"Cookie": f"refresh_token={new_refresh}"})
    assert again.status_code == 200


def test_refresh_requires_cookie(client) -> None:
    response = client.post("/api/auth/refresh")

    assert response.status_code == 401
    assert response.json()["detail"] == "Refresh token required"


def test_refresh_rejects_invalid_token(client) -> None:
    response = client.post("/api/auth/refresh", headers={"Cookie": "refresh_token=garbage"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid refresh token"


def test_logout_revokes_session_and_clears_cookies(client, notifier) -> None:
    access, refresh = _signed_in(client, notifier)

    response = client.post(
        "/api/auth/logout",
        headers={"Authorization": f"Bearer {access}", "Cookie": f"refresh_token={refresh}"},
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Logout successful"}
    cookies = set_cookies(response)
    assert cookie_value(response, "access_token") is None
    assert _cookie_path(cookies["refresh_token"]) == "/api/auth"

    after = client.post("/api/auth/refresh", headers={"Cookie": f"refresh_token={refresh}"})
    assert after.status_code == 401

    again = client.post(
        "/api/auth/logout",
        headers={"Authorization": f"Bearer {access}", "Cookie": f"refresh_token={refresh}"},
    )
    assert again.status_code == 200


def test_logout_requires_auth(client) -> None:
    response = client.post("/api/auth/logout")

    assert response.status_code == 401


def test_failed_login_requests_are_rate_limited(client) -> None:
    statuses = [client.post("/api/auth/login", json={"email": "bad-email"}).status_code for _ in range(4)]

    assert statuses == [400, 400, 400, 429]
    blocked = client.post("/api/auth/login", json={"email": "bad-email"})
    assert blocked.headers["Retry-After"]
    assert blocked.headers["X-RateLimit-Limit"] == "3"


def test_successful_login_requests_do_not_consume_quota(client, notifier) -> None:
    statuses = [client.post("/api/auth/login", json={"email": "user@example.com"}).status_code for _ in range(5)]

    assert statuses == [200] * 5


def test_verify_attempts_are_rate_limited(client) -> None:
    statuses = [client.get("/api/auth/verify", params={"token": "000000-00000000"}).status_code for _ in range(6)]

    assert statuses == [400] * 5 + [429]


def test_code_guessing_is_rate_limited(client, notifier) -> None:
    _login(client, notifier)

    statuses = [_verify_code(client, "user@example.com", f"{i:06d}").status_code for i in range(6)]

    assert statuses[5] == 429


def test_spoofed_forwarded_for_does_not_bypass_code_limit(client, notifier) -> None:
    _login(client, notifier)

    statuses = [
        client.post(
            "/api/auth/verify-code",
            json={"email": "user@example.com", "code": f"{i:06d}"},
            headers={"X-Forwarded-For": f"203.0.113.{i}"},
        ).status_code
        for i in range(8)
    ]

    assert 429 in statuses
    assert statuses.index(429) == 5


def test_forwarded_for_is_used_behind_trusted_proxy(client, notifier, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "trust_proxy_headers", True)
    _login(client, notifier)

    statuses = [
        client.post(
            "/api/auth/verify-code",
            json={"email": "user@example.com", "code": f"{i:06d}"},
            headers={"X-Forwarded-For": f"203.0.113.{i}, 10.0.0.1"},
        ).status_code
        for i in range(8)
    ]

    assert 429 not in statuses


def test_remember_me_link_sets_persistent_cookies(client, notifier) -> None:
    client.post("/api/auth/login", json={"email": "user@example.com", "rememberMe": True})
    params = link_params(notifier.login_emails[-1]["link"])
    assert params["rememberMe"] == "true"

    response = client.get("/api/auth/verify", params=params)

    assert response.status_code == 200
    assert "max-age=2592000" in set_cookies(response)["refresh_token"].lower()


def test_non_string_code_is_a_format_error(client, notifier) -> None:
    _login(client, notifier)

    response = client.post("/api/auth/verify-code", json={"email": "user@example.com", "code": 123456})

    assert response.status_code == 400
    assert response.json()["detail"] == "Code must be exactly 6 digits"
