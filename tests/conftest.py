"""
Pytest configuration and fixtures.
"""
import base64
import io
import os
import sys

import fitz  # PyMuPDF
import pytest
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pdfsign.pdf.embed import PDFEmbedder  # noqa: E402
from pdfsign.pdf.signature_image import SignatureImageProducer  # noqa: E402
from pdfsign.session import SessionStore, SigningSession  # noqa: E402

US_LETTER = (612, 792)


def build_pdf(pages=1, size=US_LETTER, text="Test Document") -> bytes:
    """Build an in-memory PDF with some text on every page."""
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=size[0], height=size[1])
        page.insert_text((50, 100), f"{text} page {i + 1}", fontsize=24)
    data = doc.tobytes()
    doc.close()
    return data


def build_png(size=(100, 50), stroke=True, mode="RGBA") -> bytes:
    """Build a PNG as a drawing surface would export it."""
    img = Image.new(mode, size, (0, 0, 0, 0) if mode == "RGBA" else "white")
    if stroke:
        draw = ImageDraw.Draw(img)
        draw.line([(5, size[1] - 10), (size[0] - 5, 10)], fill="black", width=4)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_pdf_bytes():
    """Single-page US Letter PDF."""
    return build_pdf()


@pytest.fixture
def multipage_pdf_bytes():
    """Three-page US Letter PDF."""
    return build_pdf(pages=3)


@pytest.fixture
def stroke_png():
    """100x50 transparent PNG with one black stroke."""
    return build_png()


@pytest.fixture
def blank_png():
    """100x50 fully transparent PNG (nothing drawn)."""
    return build_png(stroke=False)


@pytest.fixture
def stroke_png_base64(stroke_png):
    return base64.b64encode(stroke_png).decode()


@pytest.fixture
def blank_png_base64(blank_png):
    return base64.b64encode(blank_png).decode()


@pytest.fixture
def producer():
    return SignatureImageProducer()


@pytest.fixture
def embedder():
    return PDFEmbedder(producer="pdfsign-test")


@pytest.fixture
def session(producer, embedder):
    """Fresh idle signing session."""
    return SigningSession(producer=producer, embedder=embedder)


@pytest.fixture
def session_store(producer, embedder):
    """Isolated session store."""
    return SessionStore(
        max_sessions=10,
        ttl_seconds=3600,
        session_factory=lambda: SigningSession(producer=producer, embedder=embedder),
    )


@pytest.fixture
def client(session_store, embedder):
    """TestClient wired to an isolated session store."""
    from pdfsign.main import app
    from pdfsign.pdf.embed import get_pdf_embedder
    from pdfsign.session import get_session_store

    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_pdf_embedder] = lambda: embedder
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
