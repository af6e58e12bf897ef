"""
Signature image producer.

Turns a captured signature (freehand strokes from a drawing surface, or
typed text) into an RGBA PNG raster that the embedder can composite over
existing page content. The producer never resizes; scaling to the target
width happens at embed time.
"""
import base64
import binascii
import io
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from pdfsign.pdf.errors import EmptyStrokeError, EmptyTextError, ImageEmbedError
from pdfsign.utils.logging import fingerprint

logger = logging.getLogger(__name__)

# TrueType candidates per family, first existing file wins
FONT_PATHS = {
    "sans": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "/Library/Fonts/Arial.ttf",
        "C:\\Windows\\Fonts\\arial.ttf",
    ],
    "serif": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSerif.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSerif-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSerif.ttf",
        "/Library/Fonts/Times New Roman.ttf",
        "C:\\Windows\\Fonts\\times.ttf",
    ],
    "mono": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationMono-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeMono.ttf",
        "/Library/Fonts/Courier New.ttf",
        "C:\\Windows\\Fonts\\cour.ttf",
    ],
}

FONT_ALIASES = {
    "arial": "sans",
    "helvetica": "sans",
    "sans-serif": "sans",
    "times": "serif",
    "times new roman": "serif",
    "courier": "mono",
    "courier new": "mono",
    "monospace": "mono",
}


class SignatureType(str, Enum):
    DRAW = "draw"
    TYPE = "type"


@dataclass(frozen=True)
class DrawnSignature:
    """Raster exported by a drawing surface (PNG bytes)."""
    stroke_image: bytes

    @property
    def type(self) -> SignatureType:
        return SignatureType.DRAW


@dataclass(frozen=True)
class TypedSignature:
    """Text to be rendered as a signature."""
    text: str
    font: str = "sans"
    font_size: int = 30

    @property
    def type(self) -> SignatureType:
        return SignatureType.TYPE


SignatureSpec = Union[DrawnSignature, TypedSignature]


@dataclass(frozen=True)
class SignatureImage:
    """RGBA PNG raster of a signature."""
    data: bytes
    width: int
    height: int


def decode_image_payload(value: Union[str, bytes]) -> bytes:
    """
    Decode a signature payload into raw image bytes.

    Accepts raw bytes, plain base64 text, or a data URL such as
    ``data:image/png;base64,....`` as produced by canvas.toDataURL().

    Raises:
        ImageEmbedError: If the text is not valid base64
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)

    payload = value.strip()
    if payload.startswith("data:"):
        _, _, payload = payload.partition(",")
    if not payload:
        return b""

    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageEmbedError(f"Signature image is not valid base64: {e}") from e


def target_size(image: SignatureImage, target_width: float = 100.0) -> Tuple[float, float]:
    """Draw size keeping the image's aspect ratio at a fixed width."""
    return target_width, target_width * image.height / image.width


def resolve_font_path(font: Optional[str]) -> Optional[str]:
    """
    Find a TrueType file for a font family name or explicit path.

    Unknown families fall back to sans. Returns None when no candidate
    exists on this machine.
    """
    if font and font.lower().endswith((".ttf", ".otf")):
        if os.path.exists(font):
            return font
        logger.warning(f"Font file not found: {font}, falling back to sans")
        family = "sans"
    else:
        key = (font or "sans").strip().lower()
        family = FONT_ALIASES.get(key, key)
        if family not in FONT_PATHS:
            logger.warning(f"Unknown font family '{font}', falling back to sans")
            family = "sans"

    for path in FONT_PATHS[family]:
        if os.path.exists(path):
            return path
    return None


class SignatureImageProducer:
    """Rasterises a SignatureSpec at a fixed reference resolution."""

    def __init__(
        self,
        canvas_width: int = 200,
        canvas_height: int = 100,
        baseline: Tuple[int, int] = (20, 50),
        ink_color: Tuple[int, int, int, int] = (0, 0, 0, 255),
    ):
        self.canvas_width = canvas_width
        self.canvas_height = canvas_height
        self.baseline = baseline
        self.ink_color = ink_color

    def produce(self, spec: SignatureSpec) -> SignatureImage:
        """
        Produce the raster for a drawn or typed signature.

        Raises:
            EmptyStrokeError: Drawing surface was never drawn on
            EmptyTextError: Typed text is blank
            ImageEmbedError: Drawn capture is not a decodable image
        """
        if isinstance(spec, DrawnSignature):
            return self._from_strokes(spec)
        if isinstance(spec, TypedSignature):
            return self._from_text(spec)
        raise TypeError(f"Unsupported signature spec: {type(spec).__name__}")

    def _from_strokes(self, spec: DrawnSignature) -> SignatureImage:
        if not spec.stroke_image:
            raise EmptyStrokeError("Signature was not drawn")

        try:
            img = Image.open(io.BytesIO(spec.stroke_image))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ImageEmbedError(f"Unsupported signature image: {e}") from e

        rgba = img.convert("RGBA")
        if rgba.getchannel("A").getbbox() is None:
            raise EmptyStrokeError("Signature was not drawn")

        if img.format == "PNG" and img.mode == "RGBA":
            data = spec.stroke_image
        else:
            data = self._encode(rgba)

        logger.debug(f"Drawn signature accepted: {rgba.width}x{rgba.height}px, {len(data)} bytes")
        return SignatureImage(data=data, width=rgba.width, height=rgba.height)

    def _from_text(self, spec: TypedSignature) -> SignatureImage:
        text = spec.text.strip() if spec.text else ""
        if not text:
            raise EmptyTextError("Signature text is empty")

        canvas = Image.new("RGBA", (self.canvas_width, self.canvas_height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(canvas)
        draw.text(
            self.baseline,
            text,
            font=self._load_font(spec.font, spec.font_size),
            fill=self.ink_color,
            anchor="ls",
        )

        logger.debug(
            f"Typed signature rendered font={spec.font} size={spec.font_size} "
            f"text_fp={fingerprint(text)}"
        )
        return SignatureImage(
            data=self._encode(canvas),
            width=self.canvas_width,
            height=self.canvas_height,
        )

    def _load_font(self, font: Optional[str], size: int) -> ImageFont.FreeTypeFont:
        path = resolve_font_path(font)
        if path:
            try:
                return ImageFont.truetype(path, size)
            except OSError as e:
                logger.warning(f"Font {path} failed: {e}")
        return ImageFont.load_default(size=size)

    @staticmethod
    def _encode(img: Image.Image) -> bytes:
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()


# Singleton instance
_signature_producer: Optional[SignatureImageProducer] = None


def get_signature_producer() -> SignatureImageProducer:
    """Get the signature image producer singleton."""
    global _signature_producer
    if _signature_producer is None:
        from pdfsign.config import get_settings

        settings = get_settings()
        _signature_producer = SignatureImageProducer(
            canvas_width=settings.typed_canvas_width,
            canvas_height=settings.typed_canvas_height,
            baseline=(settings.typed_baseline_x, settings.typed_baseline_y),
        )
    return _signature_producer
