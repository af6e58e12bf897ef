# PDF module
from pdfsign.pdf.coordinates import (
    PageSize,
    PdfPoint,
    ViewportPoint,
    apply_drag_delta,
    clamp_to_page,
    to_pdf_point,
)
from pdfsign.pdf.embed import (
    PDFEmbedder,
    SignedDocument,
    SourceDocument,
    get_pdf_embedder,
)
from pdfsign.pdf.errors import (
    DocumentLoadError,
    EmptyStrokeError,
    EmptyTextError,
    ImageEmbedError,
    PageIndexOutOfRangeError,
    SigningError,
)
from pdfsign.pdf.signature_image import (
    DrawnSignature,
    SignatureImage,
    SignatureImageProducer,
    SignatureSpec,
    TypedSignature,
    get_signature_producer,
)

__all__ = [
    "PageSize",
    "PdfPoint",
    "ViewportPoint",
    "apply_drag_delta",
    "clamp_to_page",
    "to_pdf_point",
    "PDFEmbedder",
    "SignedDocument",
    "SourceDocument",
    "get_pdf_embedder",
    "DocumentLoadError",
    "EmptyStrokeError",
    "EmptyTextError",
    "ImageEmbedError",
    "PageIndexOutOfRangeError",
    "SigningError",
    "DrawnSignature",
    "SignatureImage",
    "SignatureImageProducer",
    "SignatureSpec",
    "get_signature_producer",
    "TypedSignature",
]
