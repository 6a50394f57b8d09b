import json
import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from storage_context import StorageContext  # noqa: E402


@pytest.fixture
def context(tmp_path):
    ctx = StorageContext.from_root(tmp_path / "media", backup_interval=0)
    ctx.ensure_directories()
    return ctx


@pytest.fixture
def app(context):
    from server import create_app

    flask_app = create_app(context)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def write_upload(context):
    """Puts a media file straight into the uploads directory."""

    def _write(name, data=b"data"):
        path = os.path.join(context.uploads_dir, name)
        with open(path, "wb") as f:
            f.write(data)
        return path

    return _write


@pytest.fixture
def write_metadata(context):
    """Writes raw records as the primary metadata file."""

    def _write(records, path=None):
        with open(path or context.metadata_file, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)

    return _write


@pytest.fixture
def read_metadata(context):
    def _read(path=None):
        with open(path or context.metadata_file, "r", encoding="utf-8") as f:
            return json.load(f)

    return _read
