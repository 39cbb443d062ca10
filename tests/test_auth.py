from unittest.mock import patch

from fastapi import status
from jose import jwt

from chirp.config import settings
from chirp.models import PasswordResetCode, RefreshToken
from chirp.models.user import User

TEST_PASSWORD = "Testpass1!"


def _register_payload(email: str = "a@x.com", username: str = "alice", password: str = "Aa1!aaaa") -> dict:
    return {
        "email": email,
        "username": username,
        "password": password,
        "firstName": "Alice",
    }


def _login(client, email: str = "a@x.com", password: str = "Aa1!aaaa"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_register_success(client, db, notifier):
    response = client.post("/api/auth/register", json=_register_payload())

    assert response.status_code == status.HTTP_201_CREATED
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["accessToken"]
    assert data["refreshToken"]
    assert data["user"]["email"] == "a@x.com"
    assert data["user"]["username"] == "alice"
    assert data["user"]["firstName"] == "Alice"
    assert data["user"]["isActive"] is True
    assert "password" not in data["user"]
    assert "hashedPassword" not in data["user"]
    notifier.send_welcome_email.assert_called_once_with("a@x.com", "alice")

    user = db.query(User).filter(User.email == "a@x.com").first()
    assert user is not None
    assert user.hashed_password != "Aa1!aaaa"
    assert user.hashed_password.startswith("$2")
    assert db.query(RefreshToken).filter(RefreshToken.user_id == user.id).count() == 1


def test_register_duplicate_email(client, test_user):
    response = client.post(
        "/api/auth/register",
        json=_register_payload(email=test_user.email, username="someoneelse"),
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["message"] == "Email already registered"


def test_register_duplicate_username(client, test_user):
    response = client.post(
        "/api/auth/register",
        json=_register_payload(email="other@example.com", username=test_user.username),
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["message"] == "Username already taken"


def test_register_duplicate_email_and_username_reports_email(client, test_user):
    response = client.post(
        "/api/auth/register",
        json=_register_payload(email=test_user.email, username=test_user.username),
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["message"] == "Email already registered"


def test_register_weak_password(client):
    response = client.post("/api/auth/register", json=_register_payload(password="password123"))
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"]["field"] == "password"
    assert "uppercase" in error["message"]


def test_register_invalid_username(client):
    response = client.post("/api/auth/register", json=_register_payload(username="a!"))
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"]["details"]["field"] == "username"


def test_register_invalid_email(client):
    response = client.post("/api/auth/register", json=_register_payload(email="not-an-email"))
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_register_succeeds_when_welcome_email_fails(client, db, notifier):
    notifier.send_welcome_email.side_effect = RuntimeError("SMTP down")

    response = client.post("/api/auth/register", json=_register_payload())

    assert response.status_code == status.HTTP_201_CREATED
    assert db.query(User).filter(User.email == "a@x.com").count() == 1


def test_login_success(client, test_user, db):
    response = _login(client, test_user.email, TEST_PASSWORD)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert len(data["accessToken"].split(".")) == 3
    assert data["refreshToken"]
    assert data["user"]["id"] == test_user.id

    db.refresh(test_user)
    assert test_user.last_login_at is not None


def test_login_access_token_claims(client, test_user):
    response = _login(client, test_user.email, TEST_PASSWORD)
    token = response.json()["data"]["accessToken"]

    payload = jwt.decode(
        token,
        settings.JWT_ACCESS_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )
    assert payload["userId"] == test_user.id
    assert payload["email"] == test_user.email
    assert payload["username"] == test_user.username
    assert payload["type"] == "access"
    assert payload["exp"] - payload["iat"] == settings.JWT_ACCESS_EXPIRE_MINUTES * 60


def test_login_wrong_password_and_unknown_email_are_indistinguishable(client, test_user):
    wrong_password = _login(client, test_user.email, "Wrong1!pass")
    unknown_email = _login(client, "nobody@example.com", TEST_PASSWORD)

    assert wrong_password.status_code == status.HTTP_401_UNAUTHORIZED
    assert unknown_email.status_code == status.HTTP_401_UNAUTHORIZED
    assert wrong_password.json()["error"]["message"] == "Invalid email or password"
    assert unknown_email.json()["error"]["message"] == wrong_password.json()["error"]["message"]


def test_login_deactivated_account(client, inactive_user):
    response = _login(client, inactive_user.email, TEST_PASSWORD)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["message"] == "Account is deactivated"


def test_login_deactivated_account_with_wrong_password_stays_generic(client, inactive_user):
    response = _login(client, inactive_user.email, "Wrong1!pass")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["message"] == "Invalid email or password"


def test_register_login_refresh_rotation_scenario(client):
    register = client.post("/api/auth/register", json=_register_payload())
    assert register.status_code == status.HTTP_201_CREATED
    assert register.json()["data"]["accessToken"]
    assert register.json()["data"]["refreshToken"]

    login = _login(client)
    assert login.status_code == status.HTTP_200_OK
    old_refresh = login.json()["data"]["refreshToken"]
    assert old_refresh != register.json()["data"]["refreshToken"]

    refreshed = client.post("/api/auth/refresh-token", json={"refreshToken": old_refresh})
    assert refreshed.status_code == status.HTTP_200_OK
    new_refresh = refreshed.json()["data"]["refreshToken"]
    assert new_refresh != old_refresh
    assert refreshed.json()["data"]["accessToken"]

    reused = client.post("/api/auth/refresh-token", json={"refreshToken": old_refresh})
    assert reused.status_code == status.HTTP_401_UNAUTHORIZED
    assert reused.json()["error"]["message"] == "Invalid refresh token"

    again = client.post("/api/auth/refresh-token", json={"refreshToken": new_refresh})
    assert again.status_code == status.HTTP_200_OK
    replay = client.post("/api/auth/refresh-token", json={"refreshToken": new_refresh})
    assert replay.status_code == status.HTTP_401_UNAUTHORIZED


def test_refresh_rejects_access_token(client, login_tokens):
    response = client.post("/api/auth/refresh-token", json={"refreshToken": login_tokens["accessToken"]})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_refresh_rejects_garbage(client):
    response = client.post("/api/auth/refresh-token", json={"refreshToken": "not-a-token"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"


def test_logout_revokes_refresh_token(client, login_tokens):
    refresh_token = login_tokens["refreshToken"]

    logout = client.post("/api/auth/logout", json={"refreshToken": refresh_token})
    assert logout.status_code == status.HTTP_200_OK
    assert logout.json() == {"success": True, "message": "Successfully logged out"}

    reused = client.post("/api/auth/refresh-token", json={"refreshToken": refresh_token})
    assert reused.status_code == status.HTTP_401_UNAUTHORIZED


def test_logout_is_idempotent_and_hides_token_validity(client, login_tokens):
    first = client.post("/api/auth/logout", json={"refreshToken": login_tokens["refreshToken"]})
    second = client.post("/api/auth/logout", json={"refreshToken": login_tokens["refreshToken"]})
    garbage = client.post("/api/auth/logout", json={"refreshToken": "garbage"})

    assert first.json() == second.json() == garbage.json()
    assert garbage.status_code == status.HTTP_200_OK


def test_password_reset_scenario(client, test_user, notifier):
    with patch("chirp.services.otp_service.secrets.randbelow", return_value=123456):
        forgot = client.post("/api/auth/forgot-password", json={"email": test_user.email})
    assert forgot.status_code == status.HTTP_200_OK
    notifier.send_otp_email.assert_called_once_with(test_user.email, "123456", test_user.username)

    reset = client.post(
        "/api/auth/reset-password",
        json={"email": test_user.email, "otp": "123456", "newPassword": "Bb2@bbbb"},
    )
    assert reset.status_code == status.HTTP_200_OK
    assert reset.json()["message"] == "Password has been successfully reset"
    notifier.send_password_changed_email.assert_called_once()

    assert _login(client, test_user.email, TEST_PASSWORD).status_code == status.HTTP_401_UNAUTHORIZED
    assert _login(client, test_user.email, "Bb2@bbbb").status_code == status.HTTP_200_OK


def test_reset_password_revokes_existing_sessions(client, test_user, login_tokens, notifier):
    client.post("/api/auth/forgot-password", json={"email": test_user.email})
    code = notifier.send_otp_email.call_args.args[1]

    reset = client.post(
        "/api/auth/reset-password",
        json={"email": test_user.email, "otp": code, "newPassword": "Bb2@bbbb"},
    )
    assert reset.status_code == status.HTTP_200_OK

    stale = client.post("/api/auth/refresh-token", json={"refreshToken": login_tokens["refreshToken"]})
    assert stale.status_code == status.HTTP_401_UNAUTHORIZED


def test_reset_password_code_is_single_use(client, test_user, notifier):
    client.post("/api/auth/forgot-password", json={"email": test_user.email})
    code = notifier.send_otp_email.call_args.args[1]
    payload = {"email": test_user.email, "otp": code, "newPassword": "Bb2@bbbb"}

    assert client.post("/api/auth/reset-password", json=payload).status_code == status.HTTP_200_OK
    second = client.post("/api/auth/reset-password", json=payload)
    assert second.status_code == status.HTTP_401_UNAUTHORIZED
    assert second.json()["error"]["message"] == "Invalid or expired OTP"


def test_forgot_password_nonexistent_user_is_generic(client, db, test_user, notifier):
    known = client.post("/api/auth/forgot-password", json={"email": test_user.email})
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})

    assert unknown.status_code == status.HTTP_200_OK
    assert unknown.json() == known.json()
    assert db.query(PasswordResetCode).filter(PasswordResetCode.email == "nobody@example.com").count() == 0
    notifier.send_otp_email.assert_called_once()


def test_forgot_password_deactivated_account(client, inactive_user):
    response = client.post("/api/auth/forgot-password", json={"email": inactive_user.email})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["message"] == "Account is deactivated"


def test_reset_password_rejects_malformed_otp(client, test_user):
    response = client.post(
        "/api/auth/reset-password",
        json={"email": test_user.email, "otp": "12ab56", "newPassword": "Bb2@bbbb"},
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"]["message"] == "OTP must be exactly 6 digits"


def test_me_returns_current_user_profile(client, auth_headers, test_user):
    response = client.get("/api/auth/me", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    user = response.json()["data"]["user"]
    assert user["id"] == test_user.id
    assert user["email"] == "test@example.com"
    assert user["username"] == "tester"
    assert "createdAt" in user


def test_me_requires_authentication(client):
    response = client.get("/api/auth/me")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["message"] == "Access token required"
    assert response.headers["www-authenticate"] == "Bearer"


def test_me_rejects_refresh_token(client, login_tokens):
    response = client.get(
        "/api/auth/me",
        headers={"Authorization": f"Bearer {login_tokens['refreshToken']}"},
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["message"] == "Invalid token"


def test_logout_all_revokes_every_session(client, test_user, auth_headers, login_tokens):
    second = _login(client, test_user.email, TEST_PASSWORD).json()["data"]

    response = client.post("/api/auth/logout-all", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Logged out from all devices"

    for token in (login_tokens["refreshToken"], second["refreshToken"]):
        reused = client.post("/api/auth/refresh-token", json={"refreshToken": token})
        assert reused.status_code == status.HTTP_401_UNAUTHORIZED


def test_check_token(client, auth_headers, test_user):
    response = client.get("/api/auth/check-token", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["user"]["id"] == test_user.id


def test_check_token_requires_token(client):
    response = client.get("/api/auth/check-token")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"]["message"] == "Token required"


def test_login_rate_limited(client, test_user):
    for _ in range(10):
        _login(client, test_user.email, "Wrong1!pass")

    response = _login(client, test_user.email, TEST_PASSWORD)
    assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
    assert response.json()["error"]["code"] == "RATE_LIMIT_ERROR"
