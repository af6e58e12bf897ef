"""
Error kinds raised by the signing pipeline.

User-input errors (empty stroke, empty text) are recoverable: the signer
fixes the capture and submits again. Document and image errors are terminal
for the current attempt and must be shown to the user.
"""
from typing import Optional


class SigningError(Exception):
    """Base class for signing pipeline errors."""

    default_code = "SIGNING_ERROR"
    recoverable = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message

    @property
    def is_recoverable(self) -> bool:
        return self.recoverable

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "recoverable": self.is_recoverable}


class EmptyStrokeError(SigningError):
    """Drawing surface was submitted without any strokes."""

    default_code = "EMPTY_STROKE"
    recoverable = True


class EmptyTextError(SigningError):
    """Typed signature is empty after trimming whitespace."""

    default_code = "EMPTY_TEXT"
    recoverable = True


class DocumentLoadError(SigningError):
    """Source bytes are not a readable PDF."""

    default_code = "DOCUMENT_LOAD_ERROR"


class PageIndexOutOfRangeError(SigningError):
    """Requested page does not exist in the document."""

    default_code = "PAGE_INDEX_OUT_OF_RANGE"

    def __init__(self, page_index: int, page_count: int):
        super().__init__(
            f"Page index {page_index} is out of range. "
            f"Document has {page_count} page(s)."
        )
        self.page_index = page_index
        self.page_count = page_count


class ImageEmbedError(SigningError):
    """Signature raster is not in a supported image format."""

    default_code = "IMAGE_EMBED_ERROR"
