import io
import os
import tempfile

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

os.environ.setdefault("SUPABASE_DISABLED", "1")
os.environ.setdefault("SUPABASE_STORAGE_LOCAL_DIR", tempfile.mkdtemp(prefix="pixelforge-storage-"))
os.environ.setdefault("USE_LOCAL_DB", "0")


def make_image_bytes(w=64, h=48, fmt="PNG", color=None, mode="RGB") -> bytes:
    """Synthetic test image: a gradient, or a solid ``color`` when given."""
    if color is not None:
        img = Image.new(mode, (w, h), color)
    else:
        xs = np.linspace(0, 255, w, dtype=np.float32)
        ys = np.linspace(0, 255, h, dtype=np.float32)
        arr = np.zeros((h, w, 3), dtype=np.uint8)
        arr[..., 0] = xs[None, :]
        arr[..., 1] = ys[:, None]
        arr[..., 2] = 128
        img = Image.fromarray(arr).convert(mode)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture()
def image_bytes():
    return make_image_bytes


@pytest.fixture(autouse=True)
def _reset_memory_store():
    from pixelforge.infrastructure.database.repositories import resource_repository

    with resource_repository._MEM_LOCK:
        resource_repository._MEM_RESOURCES.clear()
    yield


@pytest.fixture()
def fresh_rate_limiter():
    from pixelforge.infrastructure.api.dependencies import get_rate_limiter

    get_rate_limiter.cache_clear()
    yield
    get_rate_limiter.cache_clear()


@pytest.fixture(scope="session")
def client() -> TestClient:
    # lazy import after env configured
    from pixelforge.main import create_app

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def auth_header() -> dict[str, str]:
    # any token is accepted in disabled mode
    return {"Authorization": "Bearer test-token"}


@pytest.fixture()
def other_auth_header() -> dict[str, str]:
    return {"Authorization": "Bearer someone-else"}
