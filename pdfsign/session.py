"""
Signing session state machine.

One session walks a single document through the signing workflow:

    idle -> file_selected -> placement_pending -> signature_capturing
         -> signing -> signed | failed

Selecting a new file restarts the session from any state except signing.
A failed attempt can be retried by capturing the signature again; empty
signature input sends the session back to signature_capturing instead of
failing it.

Sessions live in process memory only (SessionStore) and are never shared.
"""
import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Union

from starlette.concurrency import run_in_threadpool

from pdfsign.pdf.coordinates import (
    PdfPoint,
    ViewportPoint,
    apply_drag_delta,
    clamp_to_page,
    to_pdf_point,
)
from pdfsign.pdf.embed import PDFEmbedder, SignedDocument, SourceDocument
from pdfsign.pdf.errors import DocumentLoadError, SigningError
from pdfsign.pdf.signature_image import SignatureImageProducer, SignatureSpec
from pdfsign.utils.datetime_utils import seconds_since, to_iso_z, utc_now

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    FILE_SELECTED = "file_selected"
    PLACEMENT_PENDING = "placement_pending"
    SIGNATURE_CAPTURING = "signature_capturing"
    SIGNING = "signing"
    SIGNED = "signed"
    FAILED = "failed"


class InvalidTransitionError(SigningError):
    """Operation is not allowed in the session's current state."""

    default_code = "INVALID_TRANSITION"

    def __init__(self, operation: str, state: SessionState):
        super().__init__(f"Cannot {operation} while session is {state.value}")
        self.operation = operation
        self.state = state


class SigningInProgressError(SigningError):
    """A signing attempt is already running for this session."""

    default_code = "SIGNING_IN_PROGRESS"

    def __init__(self):
        super().__init__("A signing attempt is already in progress")


class SessionNotFoundError(SigningError):
    default_code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Signing session not found: {session_id}")
        self.session_id = session_id


@dataclass(frozen=True)
class SignaturePlacement:
    """Where the signature goes: anchor is the centre, in PDF points."""
    anchor: PdfPoint
    page_index: int = 0

    def to_dict(self) -> dict:
        return {"page_index": self.page_index, "anchor": self.anchor.to_dict()}


class SigningSession:
    """State machine for one document signing workflow."""

    def __init__(
        self,
        session_id: Optional[str] = None,
        producer: Optional[SignatureImageProducer] = None,
        embedder: Optional[PDFEmbedder] = None,
    ):
        self.id = session_id or str(uuid.uuid4())
        self._producer = producer or SignatureImageProducer()
        self._embedder = embedder or PDFEmbedder()
        self.created_at: datetime = utc_now()
        self.updated_at: datetime = self.created_at
        self._clear(SessionState.IDLE)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def source(self) -> Optional[SourceDocument]:
        return self._source

    @property
    def filename(self) -> Optional[str]:
        return self._filename

    @property
    def placement(self) -> Optional[SignaturePlacement]:
        return self._placement

    @property
    def signature(self) -> Optional[SignatureSpec]:
        return self._signature

    @property
    def signed_document(self) -> Optional[SignedDocument]:
        return self._signed

    @property
    def last_error(self) -> Optional[SigningError]:
        return self._last_error

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def select_file(
        self,
        data: Union[bytes, bytearray],
        filename: Optional[str] = None,
    ) -> SourceDocument:
        """
        Load a new source document, discarding everything from before.

        Raises:
            SigningInProgressError: A signing attempt is running
            DocumentLoadError: Bytes are not a readable PDF (session is left idle)
        """
        if self._state == SessionState.SIGNING:
            raise SigningInProgressError()

        try:
            source = SourceDocument.load(data)
        except DocumentLoadError:
            self._clear(SessionState.IDLE)
            self._touch()
            raise

        self._clear(SessionState.IDLE)
        self._source = source
        self._filename = filename
        self._transition(SessionState.FILE_SELECTED)
        logger.info(f"Document selected: {source.page_count} page(s), {len(source.data)} bytes")
        return source

    def place(
        self,
        viewport_point: ViewportPoint,
        viewport_scale: float = 1.0,
        page_index: int = 0,
    ) -> SignaturePlacement:
        """
        Set the anchor from a pointer position on the rendered page.

        Raises:
            InvalidTransitionError: No document selected, or placement frozen
            PageIndexOutOfRangeError: page_index does not exist
        """
        self._require("place signature", SessionState.FILE_SELECTED, SessionState.PLACEMENT_PENDING)

        page_size = self._source.page_size(page_index)
        anchor = clamp_to_page(to_pdf_point(viewport_point, page_size, viewport_scale), page_size)
        self._placement = SignaturePlacement(anchor=anchor, page_index=page_index)
        self._transition(SessionState.PLACEMENT_PENDING)
        return self._placement

    def drag(self, delta: ViewportPoint, viewport_scale: float = 1.0) -> SignaturePlacement:
        """Move the anchor by a drag vector in viewport pixels."""
        self._require("drag signature", SessionState.PLACEMENT_PENDING)

        page_size = self._source.page_size(self._placement.page_index)
        moved = apply_drag_delta(self._placement.anchor, delta, viewport_scale)
        self._placement = SignaturePlacement(
            anchor=clamp_to_page(moved, page_size),
            page_index=self._placement.page_index,
        )
        self._touch()
        return self._placement

    def capture_signature(self, spec: SignatureSpec) -> None:
        """Store the drawn or typed signature, replacing any previous one."""
        self._require(
            "capture signature",
            SessionState.PLACEMENT_PENDING,
            SessionState.SIGNATURE_CAPTURING,
            SessionState.FAILED,
        )
        self._signature = spec
        self._last_error = None
        self._transition(SessionState.SIGNATURE_CAPTURING)

    async def sign(self) -> SignedDocument:
        """
        Rasterise the signature and embed it at the current placement.

        The placement is captured before the first await so later input
        cannot move a signature that is already being embedded.

        Raises:
            SigningInProgressError: Another attempt is running
            InvalidTransitionError: No signature captured yet
            EmptyStrokeError, EmptyTextError: Back to signature_capturing
            DocumentLoadError, PageIndexOutOfRangeError, ImageEmbedError: Session failed

        If the caller is cancelled the session stays signing until the worker
        thread returns, then fails with SIGNING_INTERRUPTED.
        """
        if self._state == SessionState.SIGNING:
            raise SigningInProgressError()
        self._require("sign", SessionState.SIGNATURE_CAPTURING)

        source, placement, spec = self._source, self._placement, self._signature
        self._last_error = None
        self._transition(SessionState.SIGNING)

        # The worker thread cannot be stopped, so the session stays signing
        # until it returns even if the caller is cancelled
        work = asyncio.ensure_future(
            run_in_threadpool(self._produce_and_embed, source, placement, spec)
        )
        try:
            signed = await asyncio.shield(work)
        except SigningError as e:
            self._last_error = e
            if e.is_recoverable:
                logger.info(f"Signature input rejected: {e.code}")
                self._transition(SessionState.SIGNATURE_CAPTURING)
            else:
                logger.warning(f"Signing failed: {e.code} - {e.message}")
                self._transition(SessionState.FAILED)
            raise
        except asyncio.CancelledError:
            logger.warning("Signing cancelled, waiting for the worker to finish")
            work.add_done_callback(self._finish_interrupted)
            raise
        except Exception as e:
            logger.exception("Unexpected signing failure")
            error = SigningError(f"Unexpected signing failure: {e}", code="SIGNING_FAILED")
            self._last_error = error
            self._transition(SessionState.FAILED)
            raise error from e

        self._signed = signed
        self.signed_at = utc_now()
        self._transition(SessionState.SIGNED)
        return signed

    def _finish_interrupted(self, work: asyncio.Future) -> None:
        """Settle a cancelled attempt once its worker thread has returned."""
        if not work.cancelled() and work.exception() is not None:
            logger.warning(f"Cancelled signing attempt also failed: {work.exception()}")
        self._last_error = SigningError("Signing was interrupted", code="SIGNING_INTERRUPTED")
        self._transition(SessionState.FAILED)

    def _produce_and_embed(
        self,
        source: SourceDocument,
        placement: SignaturePlacement,
        spec: SignatureSpec,
    ) -> SignedDocument:
        image = self._producer.produce(spec)
        return self._embedder.embed(source, placement.page_index, image, placement.anchor)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _clear(self, state: SessionState) -> None:
        self._state = state
        self._source: Optional[SourceDocument] = None
        self._filename: Optional[str] = None
        self._placement: Optional[SignaturePlacement] = None
        self._signature: Optional[SignatureSpec] = None
        self._signed: Optional[SignedDocument] = None
        self._last_error: Optional[SigningError] = None
        self.signed_at: Optional[datetime] = None

    def _require(self, operation: str, *allowed: SessionState) -> None:
        if self._state not in allowed:
            raise InvalidTransitionError(operation, self._state)

    def _transition(self, new_state: SessionState) -> None:
        if new_state != self._state:
            logger.info(f"Session {self.id[:8]}: {self._state.value} -> {new_state.value}")
        self._state = new_state
        self._touch()

    def _touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> dict:
        """Snapshot for API responses. Never includes document or signature bytes."""
        return {
            "session_id": self.id,
            "state": self._state.value,
            "filename": self._filename,
            "page_count": self._source.page_count if self._source else None,
            "placement": self._placement.to_dict() if self._placement else None,
            "signature_type": self._signature.type.value if self._signature else None,
            "signed": self._signed is not None,
            "signed_at": to_iso_z(self.signed_at),
            "error": self._last_error.to_dict() if self._last_error else None,
            "created_at": to_iso_z(self.created_at),
            "updated_at": to_iso_z(self.updated_at),
        }


class SessionStore:
    """
    In-memory registry of signing sessions.

    Stale sessions (untouched for ttl_seconds) are evicted when a new one is
    created; when full, the least recently touched session goes first.
    Sessions that are signing are never evicted.
    """

    def __init__(
        self,
        max_sessions: int = 100,
        ttl_seconds: int = 3600,
        session_factory: Optional[Callable[[], SigningSession]] = None,
    ):
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self._factory = session_factory or SigningSession
        self._sessions: "OrderedDict[str, SigningSession]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def create(self) -> SigningSession:
        self._evict()
        session = self._factory()
        self._sessions[session.id] = session
        logger.info(f"Created signing session {session.id[:8]} ({len(self._sessions)} active)")
        return session

    def get(self, session_id: str) -> SigningSession:
        try:
            session = self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id)
        self._sessions.move_to_end(session_id)
        return session

    def delete(self, session_id: str) -> None:
        session = self.get(session_id)
        if session.state == SessionState.SIGNING:
            raise SigningInProgressError()
        del self._sessions[session_id]
        logger.info(f"Deleted signing session {session_id[:8]}")

    def _evict(self) -> None:
        now = utc_now()
        stale = [
            sid for sid, s in self._sessions.items()
            if s.state != SessionState.SIGNING and seconds_since(s.updated_at, now) > self.ttl_seconds
        ]
        for sid in stale:
            del self._sessions[sid]
        if stale:
            logger.info(f"Evicted {len(stale)} stale signing session(s)")

        while len(self._sessions) >= self.max_sessions:
            oldest = next(
                (sid for sid, s in self._sessions.items() if s.state != SessionState.SIGNING),
                None,
            )
            if oldest is None:
                break
            del self._sessions[oldest]
            logger.info(f"Evicted signing session {oldest[:8]} (store full)")


# Singleton instance
_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get the session store singleton."""
    global _session_store
    if _session_store is None:
        from pdfsign.config import get_settings
        from pdfsign.pdf.embed import get_pdf_embedder
        from pdfsign.pdf.signature_image import get_signature_producer

        settings = get_settings()
        _session_store = SessionStore(
            max_sessions=settings.max_sessions,
            ttl_seconds=settings.session_ttl_seconds,
            session_factory=lambda: SigningSession(
                producer=get_signature_producer(),
                embedder=get_pdf_embedder(),
            ),
        )
    return _session_store
