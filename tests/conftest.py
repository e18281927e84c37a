# tests/conftest.py
import os

# Must be set before studio_service is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret"
os.environ["CLIPDROP_API_KEY"] = "test-clipdrop-key"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

from studio_service.db import Base, SessionLocal, engine
from studio_service.dependencies import get_asset_storage, get_image_api
from studio_service.image_api import ImageApiClient
from studio_service.main import app
from studio_service.models import User
from studio_service.storage import remove_local_file

IMAGE_API_URL = "https://clipdrop.test"
ASSET_HOST = "assets.test"
INPUT_BYTES = b"input-image-bytes"
RESULT_BYTES = b"result-image-bytes"

TEST_PASSWORD = "Str0ng!Pass"


class FakeAssetStorage:
    """Stands in for Cloudinary: records uploads and removes the temp file like the real one."""

    def __init__(self, fail_uploads=False):
        self.fail_uploads = fail_uploads
        self.uploaded = []
        self.deleted = []

    def upload(self, local_path):
        existed = os.path.exists(local_path)
        remove_local_file(local_path)
        if self.fail_uploads or not existed:
            return None
        url = f"https://{ASSET_HOST}/upload/v1/asset{len(self.uploaded) + 1}.png"
        self.uploaded.append(url)
        return url

    def delete(self, file_url):
        self.deleted.append(file_url)
        return True


class FakeImageApi:
    """httpx.MockTransport handler playing both the asset host and the image API."""

    def __init__(self):
        self.calls = []
        self.fail_status = None
        self.asset_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == ASSET_HOST:
            if self.asset_status != 200:
                return httpx.Response(self.asset_status, text="asset missing")
            return httpx.Response(200, content=INPUT_BYTES)
        self.calls.append({
            "path": request.url.path,
            "headers": request.headers,
            "body": request.read(),
        })
        if self.fail_status:
            return httpx.Response(self.fail_status, text="upstream failure")
        return httpx.Response(200, content=RESULT_BYTES, headers={"content-type": "image/png"})


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def asset_storage():
    return FakeAssetStorage()


@pytest.fixture
def image_api():
    return FakeImageApi()


@pytest.fixture
def client(asset_storage, image_api):
    api_client = ImageApiClient(
        base_url=IMAGE_API_URL,
        api_key="test-clipdrop-key",
        transport=httpx.MockTransport(image_api),
    )
    app.dependency_overrides[get_asset_storage] = lambda: asset_storage
    app.dependency_overrides[get_image_api] = lambda: api_client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def register(client, email="ada@example.com", name="Ada", password=TEST_PASSWORD):
    return client.post("/api/v2/users/register", json={"name": name, "email": email, "password": password})


def login(client, email="ada@example.com", password=TEST_PASSWORD):
    return client.post("/api/v2/users/login", json={"email": email, "password": password})


def set_credit(user_id, amount):
    with SessionLocal() as session:
        session.execute(update(User).where(User.id == user_id).values(credit_balance=amount))
        session.commit()


def get_credit(user_id):
    with SessionLocal() as session:
        return session.get(User, user_id).credit_balance


@pytest.fixture
def logged_in(client):
    """Registers and logs in a user; the client now carries the session cookies."""
    r_register = register(client)
    assert r_register.status_code == 201, r_register.text
    r_login = login(client)
    assert r_login.status_code == 200, r_login.text
    data = r_login.json()["data"]
    return {
        "user_id": data["user"]["id"],
        "access_token": data["accessToken"],
        "refresh_token": data["refreshToken"],
    }
