import os
import tempfile

# Settings are read once at import time; point them at throwaway locations first.
_UPLOAD_ROOT = tempfile.mkdtemp(prefix="bank-cms-uploads-")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("UPLOAD_DIR", _UPLOAD_ROOT)
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("INTERNAL_JOB_SECRET", "job-secret")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from cms_api.config import settings  # noqa: E402
from cms_api.main import app  # noqa: E402
from cms_api.services.auth_service import create_access_token  # noqa: E402


@pytest.fixture
def admin_token():
    return create_access_token(user_id="admin-1", username="admin", role="admin")


@pytest.fixture
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def upload_root():
    return settings.UPLOAD_DIR


@pytest.fixture
async def client():
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
