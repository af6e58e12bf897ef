"""
PDF embedding module using PyMuPDF (fitz).
Composites a signature raster onto one page of a PDF held in memory and
serialises the result to a new buffer. The source buffer is never touched.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import fitz  # PyMuPDF

from pdfsign.pdf.coordinates import PageSize, PdfPoint, center_origin
from pdfsign.pdf.errors import (
    DocumentLoadError,
    ImageEmbedError,
    PageIndexOutOfRangeError,
    SigningError,
)
from pdfsign.pdf.signature_image import SignatureImage, target_size

logger = logging.getLogger(__name__)

# Signature is always drawn this wide; height follows the image aspect
SIGNATURE_WIDTH_PT = 100.0


@dataclass(frozen=True)
class DrawRect:
    """
    Rectangle in PDF points.

    PDF coordinate system: origin at bottom-left, Y increases upward.
    """
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class SourceDocument:
    """Original PDF bytes plus per-page sizes derived once at load time."""
    data: bytes
    page_sizes: Tuple[PageSize, ...]

    @classmethod
    def load(cls, data: Union[bytes, bytearray, memoryview]) -> "SourceDocument":
        """
        Parse a PDF buffer and capture its page geometry.

        Raises:
            DocumentLoadError: If the bytes are not a readable PDF
        """
        data = bytes(data)
        model = PyMuPDFDocumentModel()
        doc = model.load(data)
        try:
            sizes = tuple(model.page_size(page) for page in doc)
        finally:
            doc.close()
        return cls(data=data, page_sizes=sizes)

    @property
    def page_count(self) -> int:
        return len(self.page_sizes)

    def page_size(self, page_index: int) -> PageSize:
        if not 0 <= page_index < self.page_count:
            raise PageIndexOutOfRangeError(page_index, self.page_count)
        return self.page_sizes[page_index]


@dataclass(frozen=True)
class SignedDocument:
    """Signed PDF bytes and where the signature was drawn."""
    data: bytes
    page_index: int
    anchor: PdfPoint
    rect: DrawRect


@dataclass(frozen=True)
class EmbeddedImage:
    """Validated raster ready to be drawn."""
    stream: bytes
    width: int
    height: int


class PyMuPDFDocumentModel:
    """
    Document-model operations the embedder needs, backed by PyMuPDF.

    Rects passed to draw_image are in PDF space (bottom-left origin);
    conversion to PyMuPDF's top-left, unrotated page space happens here only.
    """

    def load(self, data: bytes) -> fitz.Document:
        if not data:
            raise DocumentLoadError("PDF document is empty")
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            raise DocumentLoadError(f"Invalid PDF file: {e}") from e

        if doc.needs_pass:
            doc.close()
            raise DocumentLoadError("PDF document is password protected")
        if doc.page_count == 0:
            doc.close()
            raise DocumentLoadError("PDF has no pages")
        return doc

    def get_page(self, doc: fitz.Document, page_index: int) -> fitz.Page:
        if not 0 <= page_index < doc.page_count:
            raise PageIndexOutOfRangeError(page_index, doc.page_count)
        return doc[page_index]

    def page_size(self, page: fitz.Page) -> PageSize:
        return PageSize(width=page.rect.width, height=page.rect.height)

    def embed_raster_image(self, doc: fitz.Document, data: bytes) -> EmbeddedImage:
        # doc is unused by PyMuPDF here: images are stored on first draw
        try:
            pix = fitz.Pixmap(data)
        except Exception as e:
            raise ImageEmbedError(f"Unsupported signature image: {e}") from e
        return EmbeddedImage(stream=data, width=pix.width, height=pix.height)

    def draw_image(self, page: fitz.Page, image: EmbeddedImage, rect: DrawRect) -> None:
        # page.rect is the displayed (rotated) page; insert_image works unrotated
        page_height = page.rect.height
        y_top = page_height - rect.y - rect.height
        target = fitz.Rect(rect.x, y_top, rect.x + rect.width, y_top + rect.height)
        target = (target * page.derotation_matrix).normalize()
        try:
            page.insert_image(
                target,
                stream=image.stream,
                keep_proportion=False,
                overlay=True,
                rotate=page.rotation,
            )
        except Exception as e:
            raise ImageEmbedError(f"Failed to draw signature image: {e}") from e

    def serialize(self, doc: fitz.Document) -> bytes:
        return doc.tobytes(garbage=4, deflate=True)


def compute_draw_rect(
    anchor: PdfPoint,
    image: SignatureImage,
    target_width: float = SIGNATURE_WIDTH_PT,
) -> DrawRect:
    """
    Size the signature at target_width (keeping aspect) and centre it on anchor.

    Example: anchor (150, 692), 100x50 image -> origin (100, 667), 100x50 pt.
    """
    if image.width <= 0 or image.height <= 0:
        raise ImageEmbedError(f"Signature image has no area: {image.width}x{image.height}")
    width, height = target_size(image, target_width)
    origin = center_origin(anchor, width, height)
    return DrawRect(x=origin.x, y=origin.y, width=width, height=height)


class PDFEmbedder:
    """Signature image overlay using PyMuPDF."""

    def __init__(
        self,
        signature_width: float = SIGNATURE_WIDTH_PT,
        producer: Optional[str] = None,
        model: Optional[PyMuPDFDocumentModel] = None,
    ):
        self.signature_width = signature_width
        self.producer = producer
        self.model = model or PyMuPDFDocumentModel()

    def embed(
        self,
        source: SourceDocument,
        page_index: int,
        image: SignatureImage,
        anchor: PdfPoint,
    ) -> SignedDocument:
        """
        Draw the signature image centred on anchor and return a new PDF.

        Args:
            source: Loaded source document (left untouched)
            page_index: 0-indexed target page
            image: Signature raster
            anchor: Centre of the signature in PDF points

        Returns:
            SignedDocument with the new buffer

        Raises:
            DocumentLoadError, PageIndexOutOfRangeError, ImageEmbedError
        """
        doc = self.model.load(source.data)
        try:
            page = self.model.get_page(doc, page_index)
            embedded = self.model.embed_raster_image(doc, image.data)
            rect = compute_draw_rect(anchor, image, self.signature_width)
            self.model.draw_image(page, embedded, rect)

            if self.producer:
                metadata = doc.metadata or {}
                metadata["producer"] = self.producer
                doc.set_metadata(metadata)

            data = self.model.serialize(doc)
        except SigningError:
            raise
        except Exception as e:
            logger.exception("Failed to embed signature")
            raise SigningError(f"Failed to embed signature: {e}", code="EMBED_FAILED") from e
        finally:
            doc.close()

        logger.info(
            f"Added signature to page {page_index} at "
            f"({rect.x:.1f}, {rect.y:.1f}) size ({rect.width:.1f}x{rect.height:.1f})"
        )
        return SignedDocument(data=data, page_index=page_index, anchor=anchor, rect=rect)

    def render_page(
        self,
        document: Union[SourceDocument, SignedDocument],
        page_index: int,
        scale: float = 1.0,
    ) -> bytes:
        """
        Render one page to PNG at the given zoom (pixels per point).

        Raises:
            DocumentLoadError, PageIndexOutOfRangeError
        """
        if scale <= 0:
            raise ValueError(f"scale must be > 0, got {scale}")

        doc = self.model.load(document.data)
        try:
            page = self.model.get_page(doc, page_index)
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
            return pix.tobytes("png")
        finally:
            doc.close()


# Singleton instance
_pdf_embedder: Optional[PDFEmbedder] = None


def get_pdf_embedder() -> PDFEmbedder:
    """Get the PDF embedder singleton."""
    global _pdf_embedder
    if _pdf_embedder is None:
        from pdfsign.config import get_settings

        settings = get_settings()
        _pdf_embedder = PDFEmbedder(
            signature_width=settings.signature_width_pt,
            producer=settings.pdf_producer,
        )
    return _pdf_embedder
