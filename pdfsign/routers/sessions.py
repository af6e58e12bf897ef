"""
Signing session API.

JSON surface for a rendering client: upload a PDF, show its pages, turn
pointer clicks and drags into a placement, capture the signature, sign and
download. Domain errors propagate as SigningError and are mapped to the
standard error envelope by the handlers registered in main.
"""
import re
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request, Response
from starlette.concurrency import run_in_threadpool

from pdfsign.config import Settings, get_settings
from pdfsign.exceptions import PayloadTooLargeException, ValidationException
from pdfsign.models import (
    DocumentResponse,
    DragRequest,
    DrawnSignatureRequest,
    ErrorResponse,
    PageResponse,
    PlacementRequest,
    PlacementResponse,
    SessionResponse,
    SignatureRequest,
    SignResponse,
)
from pdfsign.pdf.coordinates import ViewportPoint, to_viewport_point
from pdfsign.pdf.embed import PDFEmbedder, get_pdf_embedder
from pdfsign.pdf.signature_image import DrawnSignature, TypedSignature, decode_image_payload
from pdfsign.session import (
    InvalidTransitionError,
    SessionStore,
    SigningSession,
    get_session_store,
)
from pdfsign.utils.logging import get_logger, set_context
from pdfsign.utils.security import compute_bytes_hash

logger = get_logger(__name__)

router = APIRouter(
    prefix="/v1/sessions",
    tags=["sessions"],
)


def get_session(
    session_id: str = Path(..., description="Signing session id"),
    store: SessionStore = Depends(get_session_store),
) -> SigningSession:
    """Resolve the session from the path, 404 if unknown."""
    session = store.get(session_id)
    set_context(session_id=session.id)
    return session


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(store: SessionStore = Depends(get_session_store)):
    """Start a new idle signing session."""
    session = store.create()
    return session.to_dict()


@router.get(
    "/{session_id}",
    response_model=SessionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def read_session(session: SigningSession = Depends(get_session)):
    return session.to_dict()


@router.delete(
    "/{session_id}",
    status_code=204,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_session(
    session_id: str = Path(..., description="Signing session id"),
    store: SessionStore = Depends(get_session_store),
):
    store.delete(session_id)
    return Response(status_code=204)


@router.put(
    "/{session_id}/document",
    response_model=DocumentResponse,
    responses={
        409: {"model": ErrorResponse, "description": "Signing in progress"},
        413: {"model": ErrorResponse, "description": "Document too large"},
        422: {"model": ErrorResponse, "description": "Not a readable PDF"},
    },
)
async def upload_document(
    request: Request,
    filename: Optional[str] = Query(None, max_length=255, description="Original file name"),
    session: SigningSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """
    Select the PDF to sign. The body is the raw PDF bytes.

    Replaces any previous document and discards placement, signature and
    signed result.
    """
    limit = settings.max_document_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLargeException(int(declared), limit)

    # Chunked uploads carry no Content-Length; stop reading once over the limit
    buffer = bytearray()
    async for chunk in request.stream():
        buffer.extend(chunk)
        if len(buffer) > limit:
            raise PayloadTooLargeException(len(buffer), limit)
    data = bytes(buffer)

    source = session.select_file(data, filename=filename)
    return DocumentResponse(
        session_id=session.id,
        state=session.state.value,
        filename=session.filename,
        size_bytes=len(source.data),
        page_count=source.page_count,
        pages=[
            PageResponse(page_index=i, width=size.width, height=size.height)
            for i, size in enumerate(source.page_sizes)
        ],
    )


def _require_source(session: SigningSession, operation: str):
    if session.source is None:
        raise InvalidTransitionError(operation, session.state)
    return session.source


@router.get(
    "/{session_id}/pages/{page_index}",
    response_model=PageResponse,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def read_page(
    page_index: int = Path(..., ge=0),
    session: SigningSession = Depends(get_session),
):
    """Page size in PDF points."""
    size = _require_source(session, "read page").page_size(page_index)
    return PageResponse(page_index=page_index, width=size.width, height=size.height)


@router.get(
    "/{session_id}/pages/{page_index}/render",
    response_class=Response,
    responses={
        200: {"content": {"image/png": {}}},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def render_page(
    page_index: int = Path(..., ge=0),
    scale: float = Query(1.0, gt=0, description="Pixels per PDF point"),
    signed: bool = Query(False, description="Render the signed result instead of the source"),
    session: SigningSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    embedder: PDFEmbedder = Depends(get_pdf_embedder),
):
    """Render a page as PNG for display."""
    if scale > settings.render_max_scale:
        raise ValidationException(
            f"scale must be <= {settings.render_max_scale}",
            details={"scale": scale},
        )

    if signed:
        document = session.signed_document
        if document is None:
            raise InvalidTransitionError("render signed document", session.state)
    else:
        document = _require_source(session, "render page")

    png = await run_in_threadpool(embedder.render_page, document, page_index, scale)
    return Response(content=png, media_type="image/png")


def _placement_response(session: SigningSession, placement, scale: float) -> dict:
    page_size = session.source.page_size(placement.page_index)
    marker = to_viewport_point(placement.anchor, page_size, scale)
    return {**placement.to_dict(), "viewport": {"x": marker.x, "y": marker.y}}


@router.post(
    "/{session_id}/placement",
    response_model=PlacementResponse,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def place_signature(
    body: PlacementRequest,
    session: SigningSession = Depends(get_session),
):
    """Place the signature where the pointer was released on the page."""
    placement = session.place(
        ViewportPoint(body.x, body.y),
        viewport_scale=body.scale,
        page_index=body.page_index,
    )
    return _placement_response(session, placement, body.scale)


@router.post(
    "/{session_id}/placement/drag",
    response_model=PlacementResponse,
    responses={409: {"model": ErrorResponse}},
)
async def drag_signature(
    body: DragRequest,
    session: SigningSession = Depends(get_session),
):
    """Move the placed signature by a drag vector."""
    placement = session.drag(ViewportPoint(body.dx, body.dy), viewport_scale=body.scale)
    return _placement_response(session, placement, body.scale)


@router.put(
    "/{session_id}/signature",
    response_model=SessionResponse,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def capture_signature(
    body: SignatureRequest = Body(..., discriminator="type"),
    session: SigningSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Capture a drawn or typed signature. Emptiness is checked when signing."""
    if isinstance(body, DrawnSignatureRequest):
        spec = DrawnSignature(stroke_image=decode_image_payload(body.image_base64))
    else:
        spec = TypedSignature(
            text=body.text,
            font=body.font or settings.typed_default_font,
            font_size=body.font_size or settings.typed_default_font_size,
        )
    session.capture_signature(spec)
    return session.to_dict()


@router.post(
    "/{session_id}/sign",
    response_model=SignResponse,
    responses={
        409: {"model": ErrorResponse, "description": "Wrong state or signing in progress"},
        422: {"model": ErrorResponse, "description": "Empty signature or unusable document"},
    },
)
async def sign_document(session: SigningSession = Depends(get_session)):
    """Embed the captured signature at the current placement."""
    signed = await session.sign()
    digest = compute_bytes_hash(signed.data)
    logger.info(f"Signed document ready: {len(signed.data)} bytes, sha256={digest[:16]}")
    return SignResponse(
        status=session.state.value,
        sha256=digest,
        size_bytes=len(signed.data),
        signed_at=session.signed_at,
        page_index=signed.page_index,
        rect=signed.rect.to_dict(),
    )


@router.get(
    "/{session_id}/signed",
    response_class=Response,
    responses={
        200: {"content": {"application/pdf": {}}},
        409: {"model": ErrorResponse, "description": "Not signed yet"},
    },
)
async def download_signed(session: SigningSession = Depends(get_session)):
    """Download the signed PDF."""
    signed = session.signed_document
    if signed is None:
        raise InvalidTransitionError("download signed document", session.state)

    name = re.sub(r"[^A-Za-z0-9._-]", "_", session.filename or "document.pdf")
    if not name.lower().endswith(".pdf"):
        name += ".pdf"
    return Response(
        content=signed.data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="signed_{name}"'},
    )
