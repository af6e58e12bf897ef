"""
Coordinate transforms between the rendered page and PDF page space.

Viewport space: pixels of the on-screen page, origin top-left, Y grows down.
The page may be displayed at any zoom level (``viewport_scale`` pixels per
point).

PDF space: points (1/72 inch), origin bottom-left, Y grows up.

All functions here are pure arithmetic.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class ViewportPoint:
    """Point (or drag vector) in viewport pixels, Y down."""
    x: float
    y: float


@dataclass(frozen=True)
class PdfPoint:
    """Point in PDF points, Y up."""
    x: float
    y: float

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class PageSize:
    """Page dimensions in points."""
    width: float
    height: float


def _require_positive_scale(viewport_scale: float) -> None:
    if viewport_scale <= 0:
        raise ValueError(f"viewport_scale must be > 0, got {viewport_scale}")


def to_pdf_point(
    viewport_point: ViewportPoint,
    page_size: PageSize,
    viewport_scale: float = 1.0,
) -> PdfPoint:
    """
    Map a viewport pixel position onto the page in PDF points.

    Pixels are divided by the zoom level to get unscaled page units, then
    the Y axis is flipped against the page height. X needs no flip.

    Example (US Letter, scale 1): (150, 100) -> (150, 692)
    """
    _require_positive_scale(viewport_scale)
    if page_size.height <= 0:
        raise ValueError(f"page height must be > 0, got {page_size.height}")

    page_x = viewport_point.x / viewport_scale
    page_y = viewport_point.y / viewport_scale
    return PdfPoint(x=page_x, y=page_size.height - page_y)


def to_viewport_point(
    pdf_point: PdfPoint,
    page_size: PageSize,
    viewport_scale: float = 1.0,
) -> ViewportPoint:
    """Inverse of to_pdf_point: where a PDF point shows up on screen."""
    _require_positive_scale(viewport_scale)
    return ViewportPoint(
        x=pdf_point.x * viewport_scale,
        y=(page_size.height - pdf_point.y) * viewport_scale,
    )


def apply_drag_delta(
    anchor: PdfPoint,
    delta: ViewportPoint,
    viewport_scale: float = 1.0,
) -> PdfPoint:
    """
    Move an anchor by a drag vector measured in viewport pixels.

    Dragging down on screen (positive dy) moves the anchor towards the
    bottom of the page, i.e. decreases PDF Y, so dy is negated.
    """
    _require_positive_scale(viewport_scale)
    return PdfPoint(
        x=anchor.x + delta.x / viewport_scale,
        y=anchor.y - delta.y / viewport_scale,
    )


def clamp_to_page(point: PdfPoint, page_size: PageSize) -> PdfPoint:
    """Clamp a point into [0, width] x [0, height]."""
    return PdfPoint(
        x=min(max(point.x, 0.0), page_size.width),
        y=min(max(point.y, 0.0), page_size.height),
    )


def center_origin(anchor: PdfPoint, width: float, height: float) -> PdfPoint:
    """Lower-left origin of a width x height box centred on anchor."""
    return PdfPoint(x=anchor.x - width / 2, y=anchor.y - height / 2)
