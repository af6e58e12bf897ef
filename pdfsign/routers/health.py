"""
Health check endpoints for diagnosing service dependencies.
"""
import time

import fitz  # PyMuPDF
import PIL
from fastapi import APIRouter, Depends

from pdfsign.models import HealthResponse
from pdfsign.pdf.signature_image import FONT_PATHS, resolve_font_path
from pdfsign.session import SessionStore, get_session_store

SERVICE_NAME = "pdfsign"
SERVICE_VERSION = "1.0.0"

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get("", response_model=HealthResponse)
async def health_check(store: SessionStore = Depends(get_session_store)):
    """Liveness check with library versions."""
    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        pymupdf_version=fitz.VersionBind,
        active_sessions=len(store),
    )


@router.get("/rendering")
async def health_check_rendering():
    """
    Verify PyMuPDF can build, render and serialise a page and list which
    signature fonts resolve on this machine. Useful for diagnosing missing
    system fonts in container images.
    """
    start_time = time.time()
    result = {
        "pymupdf_version": fitz.VersionBind,
        "pillow_version": PIL.__version__,
        "render_ok": False,
        "fonts": {},
        "error": None,
    }

    for family in FONT_PATHS:
        result["fonts"][family] = resolve_font_path(family)

    try:
        doc = fitz.open()
        try:
            page = doc.new_page(width=200, height=100)
            page.insert_text((20, 50), "health", fontsize=12)
            pix = page.get_pixmap(alpha=False)
            result["render_ok"] = pix.width == 200 and len(doc.tobytes()) > 0
        finally:
            doc.close()
    except Exception as e:
        result["error"] = f"{type(e).__name__}: {e}"

    result["duration_seconds"] = round(time.time() - start_time, 3)
    status = "healthy" if result["render_ok"] and all(result["fonts"].values()) else "degraded"
    if result["error"]:
        status = "unhealthy"
    return {"status": status, "rendering": result}
