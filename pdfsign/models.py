from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pdfsign.pdf.signature_image import FONT_ALIASES, FONT_PATHS


class BaseRequest(BaseModel):
    """Base class for all request models - ignores extra fields."""
    model_config = ConfigDict(extra="ignore")


# Request Models
class PlacementRequest(BaseRequest):
    x: float = Field(..., description="Pointer X in viewport pixels from the left edge")
    y: float = Field(..., description="Pointer Y in viewport pixels from the top edge")
    scale: float = Field(1.0, gt=0, description="Viewport pixels per PDF point")
    page_index: int = Field(0, ge=0, description="0-indexed page number")


class DragRequest(BaseRequest):
    dx: float = Field(..., description="Drag vector X in viewport pixels")
    dy: float = Field(..., description="Drag vector Y in viewport pixels (down is positive)")
    scale: float = Field(1.0, gt=0, description="Viewport pixels per PDF point")


class DrawnSignatureRequest(BaseRequest):
    type: Literal["draw"]
    image_base64: str = Field(
        "",
        description="PNG exported from the drawing surface, plain base64 or data URL",
    )


class TypedSignatureRequest(BaseRequest):
    type: Literal["type"]
    text: str = Field("", max_length=200)
    font: Optional[str] = Field(None, max_length=255)
    font_size: Optional[int] = Field(None, gt=0, le=200)

    @field_validator("font")
    @classmethod
    def validate_font(cls, v: Optional[str]) -> Optional[str]:
        """Only known family names or aliases; font files are not client-selectable."""
        if v is None:
            return v
        key = v.strip().lower()
        if key not in FONT_PATHS and key not in FONT_ALIASES:
            allowed = ", ".join(sorted({*FONT_PATHS, *FONT_ALIASES}))
            raise ValueError(f"Unknown font: {v}. Allowed: {allowed}")
        return key


SignatureRequest = Union[DrawnSignatureRequest, TypedSignatureRequest]


# Response Models
class PointResponse(BaseModel):
    x: float
    y: float


class PlacementResponse(BaseModel):
    page_index: int
    anchor: PointResponse
    viewport: Optional[PointResponse] = Field(
        None, description="Where to draw the marker at the request's zoom level"
    )


class PageResponse(BaseModel):
    page_index: int
    width: float
    height: float


class DocumentResponse(BaseModel):
    session_id: str
    state: str
    filename: Optional[str] = None
    size_bytes: int
    page_count: int
    pages: List[PageResponse]


class SignatureErrorInfo(BaseModel):
    code: str
    message: str
    recoverable: bool = False


class SessionResponse(BaseModel):
    session_id: str
    state: str
    filename: Optional[str] = None
    page_count: Optional[int] = None
    placement: Optional[PlacementResponse] = None
    signature_type: Optional[str] = None
    signed: bool = False
    signed_at: Optional[str] = None
    error: Optional[SignatureErrorInfo] = None
    created_at: str
    updated_at: str


class RectResponse(BaseModel):
    x: float
    y: float
    width: float
    height: float


class SignResponse(BaseModel):
    status: str
    sha256: str
    size_bytes: int
    signed_at: datetime
    page_index: int
    rect: RectResponse


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    pymupdf_version: str
    active_sessions: int

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in ("healthy", "degraded"):
            raise ValueError(f"Unknown health status: {v}")
        return v


# Error Response
class ErrorResponse(BaseModel):
    error: bool = True
    code: str
    message: str
    details: Optional[dict] = None
    request_id: Optional[str] = None
