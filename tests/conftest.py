import io
import os
import tempfile
from pathlib import Path

import pytest

# Point the service at throwaway folders before config is imported.
_WORK_DIR = Path(tempfile.mkdtemp(prefix="invite-tests-"))
os.environ["OUTPUT_FOLDER"] = str(_WORK_DIR / "invitations")
os.environ["UPLOAD_FOLDER"] = str(_WORK_DIR / "uploads")
os.environ["FONT_PATH"] = str(_WORK_DIR / "missing-font.ttf")
os.environ["CURRENT_URL"] = "https://invites.example.com"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from pypdf import PdfWriter  # noqa: E402


def make_template(pages: int = 1, width: float = 612, height: float = 792) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=width, height=height)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


@pytest.fixture
def template_pdf() -> bytes:
    return make_template(pages=1)


@pytest.fixture
def two_page_template() -> bytes:
    return make_template(pages=2)


@pytest.fixture
def output_folder() -> Path:
    import config

    return config.OUTPUT_FOLDER


@pytest.fixture(scope="session")
def client():
    from fastapi.testclient import TestClient

    from app_server import app

    with TestClient(app) as test_client:
        yield test_client
