# tests/test_auth.py
from conftest import TEST_PASSWORD, login, register
from studio_service.models import User
from studio_service.utils import verify_password

SECRET_FIELDS = {"password", "hashed_password", "refreshToken", "refresh_token"}


def test_register_returns_sanitized_user_with_default_credit(client, db):
    r = register(client)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["success"] is True
    assert body["statusCode"] == 201
    user = body["data"]
    assert user["email"] == "ada@example.com"
    assert user["creditBalance"] == 6
    assert not SECRET_FIELDS & set(user)

    stored = db.query(User).filter(User.email == "ada@example.com").one()
    assert stored.hashed_password != TEST_PASSWORD
    assert verify_password(TEST_PASSWORD, stored.hashed_password)


def test_register_duplicate_email(client):
    assert register(client).status_code == 201
    r = register(client, name="Someone Else")
    assert r.status_code == 400
    assert r.json()["message"] == "User already exists with this email"
    assert r.json()["success"] is False


def test_register_rejects_weak_password(client):
    r = register(client, password="password123")
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["errors"][0]["field"] == "password"


def test_register_rejects_invalid_email_and_short_name(client):
    assert register(client, email="not-an-email").status_code == 400
    assert register(client, name="A").status_code == 400


def test_login_unknown_user_and_wrong_password(client):
    assert login(client, email="nobody@example.com").status_code == 404
    register(client)
    r = login(client, password="Wr0ng!Pass")
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid password"


def test_register_login_current_user_round_trip(client, logged_in):
    # Cookie-borne session
    r = client.get("/api/v2/users/current-user")
    assert r.status_code == 200, r.text
    user = r.json()["data"]
    assert user["id"] == logged_in["user_id"]
    assert not SECRET_FIELDS & set(user)

    # Header-borne session
    client.cookies.clear()
    r = client.get("/api/v2/users/current-user",
                   headers={"Authorization": f"Bearer {logged_in['access_token']}"})
    assert r.status_code == 200
    assert r.json()["data"]["email"] == "ada@example.com"


def test_login_sets_http_only_cookies(client):
    register(client)
    r = login(client)
    cookies = r.headers.get_list("set-cookie")
    assert any(c.startswith("accessToken=") and "HttpOnly" in c for c in cookies)
    assert any(c.startswith("refreshToken=") and "HttpOnly" in c for c in cookies)


def test_current_user_requires_valid_token(client):
    assert client.get("/api/v2/users/current-user").status_code == 401
    r = client.get("/api/v2/users/current-user", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_deleted_user_token_is_unauthorized(client, logged_in, db):
    db.query(User).filter(User.id == logged_in["user_id"]).delete()
    db.commit()
    r = client.get("/api/v2/users/current-user")
    assert r.status_code == 401


def test_credit_endpoint(client, logged_in):
    r = client.get("/api/v2/users/credit")
    assert r.status_code == 200
    assert r.json()["data"] == {"name": "Ada", "credit": 6}


def test_refresh_rotates_tokens_and_rejects_old_one(client, logged_in):
    old_refresh = logged_in["refresh_token"]
    client.cookies.clear()

    r = client.post("/api/v2/users/refresh-token", json={"refreshToken": old_refresh})
    assert r.status_code == 200, r.text
    new_pair = r.json()["data"]
    assert new_pair["refreshToken"] != old_refresh

    client.cookies.clear()
    r = client.post("/api/v2/users/refresh-token", json={"refreshToken": old_refresh})
    assert r.status_code == 401
    assert r.json()["message"] == "Token mismatch, unauthorized request"

    r = client.post("/api/v2/users/refresh-token", json={"refreshToken": new_pair["refreshToken"]})
    assert r.status_code == 200


def test_refresh_from_cookie(client, logged_in):
    r = client.post("/api/v2/users/refresh-token")
    assert r.status_code == 200
    assert r.json()["data"]["accessToken"]


def test_refresh_without_token(client):
    r = client.post("/api/v2/users/refresh-token")
    assert r.status_code == 401
    assert r.json()["message"] == "unauthorized request, refresh token missing"


def test_refresh_with_garbage_token(client):
    r = client.post("/api/v2/users/refresh-token", json={"refreshToken": "garbage"})
    assert r.status_code == 401


def test_second_login_revokes_first_session(client, logged_in):
    first_refresh = logged_in["refresh_token"]
    assert login(client).status_code == 200
    client.cookies.clear()
    r = client.post("/api/v2/users/refresh-token", json={"refreshToken": first_refresh})
    assert r.status_code == 401


def test_logout_clears_cookies_and_refresh_token(client, logged_in, db):
    r = client.post("/api/v2/users/logout")
    assert r.status_code == 200, r.text
    cleared = r.headers.get_list("set-cookie")
    assert any(c.startswith("accessToken=") and "Max-Age=0" in c for c in cleared)
    assert any(c.startswith("refreshToken=") and "Max-Age=0" in c for c in cleared)
    assert db.get(User, logged_in["user_id"]).refresh_token is None

    client.cookies.clear()
    r = client.post("/api/v2/users/refresh-token", json={"refreshToken": logged_in["refresh_token"]})
    assert r.status_code == 401

    # Access tokens are stateless: the old one works until it expires
    r = client.get("/api/v2/users/current-user",
                   headers={"Authorization": f"Bearer {logged_in['access_token']}"})
    assert r.status_code == 200


def test_logout_requires_authentication(client):
    assert client.post("/api/v2/users/logout").status_code == 401


def test_register_rejects_password_longer_than_bcrypt_allows(client):
    # 64 characters, but 124 bytes once encoded
    r = register(client, password="Aa1!" + "é" * 60)
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["errors"][0]["field"] == "password"


def test_login_with_overlong_password_is_unauthorized(client):
    assert register(client).status_code == 201
    r = login(client, password=TEST_PASSWORD + "é" * 40)
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid password"
