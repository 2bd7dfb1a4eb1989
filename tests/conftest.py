import mongomock
import pytest

from backend.app import create_app

TEST_JWT_SECRET = "test-secret-key-with-at-least-32-bytes!!"


@pytest.fixture
def db():
    return mongomock.MongoClient().craftcircle


@pytest.fixture
def app_config(tmp_path):
    return {
        "TESTING": True,
        "JWT_SECRET_KEY": TEST_JWT_SECRET,
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "ADMIN_KEY": "NLRM1103",
        "STORAGE_PUBLIC_URL": "",
        "RESEND_API_KEY": "",
        "SHIPPING_PROVIDER": "",
        "SHIPPING_HARDCODE": "",
        "SHIPPING_HARDCODE_SALT": "",
        "SHIPPING_CURRENCY": "INR",
        "EASYSHIP_API_KEY": "",
        "EASYSHIP_BASE_URL": "",
        "EASYSHIP_PICKUP_PINCODE": "110064",
        "EASYSHIP_PICKUP_COUNTRY": "IN",
    }


@pytest.fixture
def app(app_config, db):
    return create_app(app_config, db=db)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(client):
    def _auth_headers(email="maker@example.com", name="Maya Maker", password="s3cret-pass"):
        client.post(
            "/api/register", json={"email": email, "name": name, "password": password}
        )
        response = client.post("/api/login", json={"email": email, "password": password})
        token = response.get_json()["access_token"]
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
