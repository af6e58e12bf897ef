"""
Tests for the signing session state machine and session store.
"""
import asyncio
import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from pdfsign.pdf.coordinates import PdfPoint, ViewportPoint
from pdfsign.pdf.errors import (
    DocumentLoadError,
    EmptyStrokeError,
    EmptyTextError,
    ImageEmbedError,
    PageIndexOutOfRangeError,
    SigningError,
)
from pdfsign.pdf.signature_image import DrawnSignature, SignatureImageProducer, TypedSignature
from pdfsign.session import (
    InvalidTransitionError,
    SessionNotFoundError,
    SessionState,
    SessionStore,
    SigningInProgressError,
    SigningSession,
)


def ready_to_sign(session, pdf_bytes, spec):
    """Drive a session to signature_capturing with a Letter-page placement."""
    session.select_file(pdf_bytes, filename="contract.pdf")
    session.place(ViewportPoint(150, 100))
    session.capture_signature(spec)
    return session


class BlockingProducer(SignatureImageProducer):
    """Producer that waits for a signal so a sign() call stays in flight."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def produce(self, spec):
        self.started.set()
        self.release.wait(timeout=5)
        return super().produce(spec)


class TestSelectFile:
    """Tests for selecting the source document."""

    def test_initial_state(self, session):
        assert session.state == SessionState.IDLE
        assert session.source is None

    def test_select_file(self, session, sample_pdf_bytes):
        source = session.select_file(sample_pdf_bytes, filename="contract.pdf")
        assert session.state == SessionState.FILE_SELECTED
        assert source.page_count == 1
        assert session.filename == "contract.pdf"

    def test_invalid_file_leaves_idle(self, session, sample_pdf_bytes):
        """A bad file discards the previous document and leaves the session idle."""
        session.select_file(sample_pdf_bytes)
        with pytest.raises(DocumentLoadError):
            session.select_file(b"not a pdf")
        assert session.state == SessionState.IDLE
        assert session.source is None

    @pytest.mark.asyncio
    async def test_new_file_after_signed_clears_result(self, session, sample_pdf_bytes, stroke_png):
        """Selecting a new file after signing discards the signed result."""
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(stroke_png))
        await session.sign()
        assert session.state == SessionState.SIGNED

        session.select_file(sample_pdf_bytes)

        assert session.state == SessionState.FILE_SELECTED
        assert session.signed_document is None
        assert session.placement is None
        assert session.signature is None
        assert session.signed_at is None


class TestPlacement:
    """Tests for placing and dragging the signature."""

    def test_place_before_file_rejected(self, session):
        with pytest.raises(InvalidTransitionError) as exc_info:
            session.place(ViewportPoint(10, 10))
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_place_converts_to_pdf_space(self, session, sample_pdf_bytes):
        session.select_file(sample_pdf_bytes)
        placement = session.place(ViewportPoint(150, 100))
        assert session.state == SessionState.PLACEMENT_PENDING
        assert placement.anchor == PdfPoint(150, 692)
        assert placement.page_index == 0

    def test_place_scaled(self, session, sample_pdf_bytes):
        session.select_file(sample_pdf_bytes)
        placement = session.place(ViewportPoint(300, 200), viewport_scale=2.0)
        assert placement.anchor == PdfPoint(150, 692)

    def test_replace_while_pending(self, session, sample_pdf_bytes):
        """A second click moves the placement."""
        session.select_file(sample_pdf_bytes)
        session.place(ViewportPoint(150, 100))
        placement = session.place(ViewportPoint(200, 200))
        assert placement.anchor == PdfPoint(200, 592)

    def test_place_clamped_to_page(self, session, sample_pdf_bytes):
        session.select_file(sample_pdf_bytes)
        placement = session.place(ViewportPoint(-20, 900))
        assert placement.anchor == PdfPoint(0, 0)

    def test_place_on_missing_page(self, session, sample_pdf_bytes):
        session.select_file(sample_pdf_bytes)
        with pytest.raises(PageIndexOutOfRangeError):
            session.place(ViewportPoint(10, 10), page_index=2)
        assert session.state == SessionState.FILE_SELECTED

    def test_place_on_later_page(self, session, multipage_pdf_bytes):
        session.select_file(multipage_pdf_bytes)
        assert session.place(ViewportPoint(10, 10), page_index=2).page_index == 2

    def test_drag_moves_anchor(self, session, sample_pdf_bytes):
        """Dragging down and right moves the anchor right and lower on the page."""
        session.select_file(sample_pdf_bytes)
        session.place(ViewportPoint(150, 100))
        placement = session.drag(ViewportPoint(10, 20))
        assert placement.anchor == PdfPoint(160, 672)
        assert session.state == SessionState.PLACEMENT_PENDING

    def test_drag_before_place_rejected(self, session, sample_pdf_bytes):
        session.select_file(sample_pdf_bytes)
        with pytest.raises(InvalidTransitionError):
            session.drag(ViewportPoint(1, 1))


class TestCaptureSignature:
    """Tests for capturing the signature."""

    def test_capture_requires_placement(self, session, sample_pdf_bytes):
        session.select_file(sample_pdf_bytes)
        with pytest.raises(InvalidTransitionError):
            session.capture_signature(TypedSignature("Jane"))

    def test_switching_variant_replaces_capture(self, session, sample_pdf_bytes, stroke_png):
        """Only the last captured variant is kept."""
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(stroke_png))
        session.capture_signature(TypedSignature("Jane"))
        assert session.signature == TypedSignature("Jane")
        assert session.state == SessionState.SIGNATURE_CAPTURING

    def test_placement_frozen_while_capturing(self, session, sample_pdf_bytes):
        ready_to_sign(session, sample_pdf_bytes, TypedSignature("Jane"))
        with pytest.raises(InvalidTransitionError):
            session.drag(ViewportPoint(5, 5))


class TestSign:
    """Tests for SigningSession.sign()."""

    @pytest.mark.asyncio
    async def test_sign_drawn(self, session, sample_pdf_bytes, stroke_png):
        """Drawn signature is embedded centred on the placement."""
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(stroke_png))

        signed = await session.sign()

        assert session.state == SessionState.SIGNED
        assert session.signed_document is signed
        assert session.signed_at is not None
        assert (signed.rect.x, signed.rect.y) == (100, 667)
        assert (signed.rect.width, signed.rect.height) == (100, 50)

    @pytest.mark.asyncio
    async def test_sign_typed(self, session, sample_pdf_bytes):
        ready_to_sign(session, sample_pdf_bytes, TypedSignature("Jane Doe"))
        signed = await session.sign()
        assert session.state == SessionState.SIGNED
        assert signed.rect.width == 100

    @pytest.mark.asyncio
    async def test_sign_requires_signature(self, session, sample_pdf_bytes):
        session.select_file(sample_pdf_bytes)
        session.place(ViewportPoint(150, 100))
        with pytest.raises(InvalidTransitionError):
            await session.sign()
        assert session.state == SessionState.PLACEMENT_PENDING

    @pytest.mark.asyncio
    async def test_drawn_without_strokes_stays_capturing(self, session, sample_pdf_bytes, blank_png):
        """An empty drawing surface is rejected and the user can draw again."""
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(blank_png))

        with pytest.raises(EmptyStrokeError):
            await session.sign()

        assert session.state == SessionState.SIGNATURE_CAPTURING
        assert session.last_error.code == "EMPTY_STROKE"
        assert session.signed_document is None

    @pytest.mark.asyncio
    async def test_blank_text_stays_capturing(self, session, sample_pdf_bytes):
        ready_to_sign(session, sample_pdf_bytes, TypedSignature("   "))
        with pytest.raises(EmptyTextError):
            await session.sign()
        assert session.state == SessionState.SIGNATURE_CAPTURING

    @pytest.mark.asyncio
    async def test_failure_then_retry(self, session, sample_pdf_bytes, stroke_png):
        """An undecodable image fails the attempt; capturing again allows a retry."""
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(b"junk"))

        with pytest.raises(ImageEmbedError):
            await session.sign()
        assert session.state == SessionState.FAILED
        assert session.last_error.code == "IMAGE_EMBED_ERROR"

        with pytest.raises(InvalidTransitionError):
            await session.sign()

        session.capture_signature(DrawnSignature(stroke_png))
        assert session.last_error is None
        await session.sign()
        assert session.state == SessionState.SIGNED

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, sample_pdf_bytes):
        """Non-domain errors fail the session with a generic signing error."""
        producer = MagicMock()
        producer.produce.side_effect = RuntimeError("boom")
        session = SigningSession(producer=producer)
        ready_to_sign(session, sample_pdf_bytes, TypedSignature("Jane"))

        with pytest.raises(SigningError) as exc_info:
            await session.sign()

        assert exc_info.value.code == "SIGNING_FAILED"
        assert session.state == SessionState.FAILED

    @pytest.mark.asyncio
    async def test_signing_twice_rejected_after_success(self, session, sample_pdf_bytes, stroke_png):
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(stroke_png))
        await session.sign()
        with pytest.raises(InvalidTransitionError):
            await session.sign()


class TestSignReentrancy:
    """Tests for the in-flight signing guard."""

    @pytest.mark.asyncio
    async def test_second_sign_rejected_while_in_flight(self, embedder, sample_pdf_bytes, stroke_png):
        """Only one signing attempt runs at a time; others are rejected, not queued."""
        producer = BlockingProducer()
        session = SigningSession(producer=producer, embedder=embedder)
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(stroke_png))

        first = asyncio.create_task(session.sign())
        await asyncio.sleep(0)
        assert session.state == SessionState.SIGNING

        with pytest.raises(SigningInProgressError) as exc_info:
            await session.sign()
        assert exc_info.value.code == "SIGNING_IN_PROGRESS"

        with pytest.raises(SigningInProgressError):
            session.select_file(sample_pdf_bytes)

        with pytest.raises(InvalidTransitionError):
            session.drag(ViewportPoint(50, 50))

        producer.release.set()
        signed = await first

        assert session.state == SessionState.SIGNED
        assert (signed.rect.x, signed.rect.y) == (100, 667)

    @pytest.mark.asyncio
    async def test_cancelled_sign_holds_session_until_worker_returns(
        self, embedder, sample_pdf_bytes, stroke_png
    ):
        """A cancelled caller cannot free the session while embedding still runs."""
        producer = BlockingProducer()
        session = SigningSession(producer=producer, embedder=embedder)
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(stroke_png))

        task = asyncio.create_task(session.sign())
        assert await asyncio.to_thread(producer.started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state == SessionState.SIGNING
        with pytest.raises(SigningInProgressError):
            await session.sign()
        with pytest.raises(SigningInProgressError):
            session.select_file(sample_pdf_bytes)

        producer.release.set()
        for _ in range(500):
            if session.state != SessionState.SIGNING:
                break
            await asyncio.sleep(0.01)

        assert session.state == SessionState.FAILED
        assert session.last_error.code == "SIGNING_INTERRUPTED"
        assert session.signed_document is None

        session.capture_signature(DrawnSignature(stroke_png))
        await session.sign()
        assert session.state == SessionState.SIGNED


class TestToDict:
    """Tests for the session snapshot."""

    def test_idle_snapshot(self, session):
        data = session.to_dict()
        assert data["state"] == "idle"
        assert data["placement"] is None
        assert data["signed"] is False
        assert data["created_at"].endswith("Z")

    @pytest.mark.asyncio
    async def test_error_snapshot(self, session, sample_pdf_bytes, blank_png):
        ready_to_sign(session, sample_pdf_bytes, DrawnSignature(blank_png))
        with pytest.raises(EmptyStrokeError):
            await session.sign()

        data = session.to_dict()
        assert data["signature_type"] == "draw"
        assert data["placement"] == {"page_index": 0, "anchor": {"x": 150, "y": 692}}
        assert data["error"] == {
            "code": "EMPTY_STROKE",
            "message": "Signature was not drawn",
            "recoverable": True,
        }


class TestSessionStore:
    """Tests for SessionStore."""

    def test_create_and_get(self, session_store):
        session = session_store.create()
        assert session_store.get(session.id) is session
        assert len(session_store) == 1

    def test_unknown_session(self, session_store):
        with pytest.raises(SessionNotFoundError) as exc_info:
            session_store.get("missing")
        assert exc_info.value.code == "SESSION_NOT_FOUND"

    def test_delete(self, session_store):
        session = session_store.create()
        session_store.delete(session.id)
        assert session.id not in session_store

    def test_evicts_oldest_when_full(self):
        store = SessionStore(max_sessions=2)
        first = store.create()
        second = store.create()
        third = store.create()
        assert first.id not in store
        assert second.id in store
        assert third.id in store

    def test_get_refreshes_eviction_order(self):
        """Recently used sessions survive eviction."""
        store = SessionStore(max_sessions=2)
        first = store.create()
        second = store.create()
        store.get(first.id)
        store.create()
        assert first.id in store
        assert second.id not in store

    def test_evicts_stale_sessions(self):
        store = SessionStore(max_sessions=10, ttl_seconds=60)
        stale = store.create()
        stale.updated_at = stale.updated_at - timedelta(seconds=120)
        fresh = store.create()
        assert stale.id not in store
        assert fresh.id in store
