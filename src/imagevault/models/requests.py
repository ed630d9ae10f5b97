"""Pydantic request and response models for API endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PresignRequest(_CamelModel):
    """Request model for the presign endpoint."""
    mime_type: str = Field(alias="mimeType", min_length=1)
    size_bytes: StrictInt = Field(alias="sizeBytes")


class PresignResponse(_CamelModel):
    image_id: str = Field(alias="imageId")
    original_url: str = Field(alias="originalUrl")


class ImageIdRequest(_CamelModel):
    """Request model for verify and delete."""
    image_id: str = Field(alias="imageId", min_length=1)


class VerifyResponse(BaseModel):
    id: str
    path: str


class PreviewItemResponse(_CamelModel):
    id: str
    created_at: datetime = Field(alias="createdAt")
    preview_path: str = Field(alias="previewPath")
    signed_url: Optional[str] = Field(default=None, alias="signedUrl")
    sign_error: Optional[str] = Field(default=None, alias="signError")


class PreviewPageResponse(_CamelModel):
    items: List[PreviewItemResponse]
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")
    limit: int


class SignedUrlResponse(_CamelModel):
    signed_url: str = Field(alias="signedUrl")


class EmbedResponse(BaseModel):
    collection: str
    id: str
    status: str
