"""
Pytest configuration file.

Sets up an isolated environment before the app modules are imported, and
provides store / client fixtures backed by per-test temporary directories.
"""
import os
import sys
import tempfile
from pathlib import Path

import pytest

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="clipboard-tests-"))

# Must be set before clipboard_backend.config is imported.
os.environ["API_KEY"] = "test-api-key"
os.environ["BASE_URL"] = "http://testserver"
os.environ["CLIPBOARD_RATE_LIMIT_ENABLED"] = "0"
os.environ["CLIPBOARD_DATA_DIR"] = str(_TEST_ROOT / "data")
os.environ["CLIPBOARD_UPLOADS_ROOT"] = str(_TEST_ROOT / "uploads")
os.environ["CLIPBOARD_FRONTEND_DIST"] = str(_TEST_ROOT / "no-frontend")

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from clipboard_backend.blobs import BlobStore  # noqa: E402
from clipboard_backend.store import ItemStore  # noqa: E402

API_KEY = "test-api-key"
AUTH_HEADERS = {"X-API-Key": API_KEY}


@pytest.fixture
def blobs(tmp_path: Path) -> BlobStore:
    store = BlobStore(tmp_path / "uploads")
    store.ensure_root()
    return store


@pytest.fixture
def store(tmp_path: Path, blobs: BlobStore):
    item_store = ItemStore(f"sqlite:///{tmp_path / 'clipboard.db'}", blobs)
    item_store.open()
    try:
        yield item_store
    finally:
        item_store.close()


@pytest.fixture
def make_app(tmp_path: Path):
    """Build an app wired to a fresh database and blob directory."""
    from server import create_app

    def _make(frontend_dist=None, **kwargs):
        item_store = ItemStore(
            f"sqlite:///{tmp_path / 'api.db'}",
            BlobStore(tmp_path / "api-uploads"),
        )
        return create_app(
            store=item_store,
            api_key=API_KEY,
            base_url="http://testserver",
            frontend_dist=frontend_dist,
            **kwargs,
        )

    return _make


@pytest.fixture
def client(make_app):
    from fastapi.testclient import TestClient

    with TestClient(make_app()) as test_client:
        yield test_client
