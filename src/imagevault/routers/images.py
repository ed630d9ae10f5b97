"""Image upload, verification, listing and deletion endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from imagevault.intake import IntakeValidator
from imagevault.dependencies import get_intake_validator, get_retrieval_engine
from imagevault.models.requests import (
    EmbedResponse,
    ImageIdRequest,
    PresignRequest,
    PresignResponse,
    PreviewItemResponse,
    PreviewPageResponse,
    SignedUrlResponse,
    VerifyResponse,
)
from imagevault.ratelimit import limiter
from imagevault.retrieval import RetrievalEngine
from imagevault.settings import settings


router = APIRouter(prefix="/images", tags=["images"])


@router.post("/presign", response_model=PresignResponse, status_code=201)
@limiter.limit(settings.presign_rate_limit)
def create_presigned_upload(
    request: Request,
    body: PresignRequest,
    intake: IntakeValidator = Depends(get_intake_validator),
):
    """Reserve an image id and return a signed URL for uploading the original.

    The client must call ``/images/verify`` once the upload has finished.
    """
    intent = intake.issue_upload_intent(body.mime_type, body.size_bytes)
    return PresignResponse(image_id=intent.image_id, original_url=intent.write_url)


@router.post("/verify", response_model=VerifyResponse)
def verify_upload(
    body: ImageIdRequest,
    intake: IntakeValidator = Depends(get_intake_validator),
):
    """Validate an uploaded original, wait for its thumbnail and accept it."""
    return intake.validate_upload(body.image_id)


@router.get("/preview", response_model=PreviewPageResponse)
def list_previews(
    q: Optional[str] = Query(None),
    after: Optional[str] = Query(None),
    limit: int = Query(settings.preview_default_limit),
    engine: RetrievalEngine = Depends(get_retrieval_engine),
):
    """List accepted image previews newest first; ``q`` filters by caption."""
    page = engine.list_previews(q=q, cursor_token=after, limit=limit)
    return PreviewPageResponse(
        items=[
            PreviewItemResponse(
                id=item.id,
                created_at=item.created_at,
                preview_path=item.preview_path,
                signed_url=item.signed_url,
                sign_error=item.sign_error,
            )
            for item in page.items
        ],
        next_cursor=page.next_cursor,
        limit=page.limit,
    )


@router.get("/original", response_model=SignedUrlResponse)
def get_original_url(
    filename: str = Query(..., min_length=1),
    intake: IntakeValidator = Depends(get_intake_validator),
):
    result = intake.get_original_url(filename)
    return SignedUrlResponse(signed_url=result["signed_url"])


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def delete_image(
    body: ImageIdRequest,
    intake: IntakeValidator = Depends(get_intake_validator),
):
    intake.delete_image(body.image_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{image_id}/embed", response_model=EmbedResponse, status_code=201)
def embed_image(
    image_id: str,
    intake: IntakeValidator = Depends(get_intake_validator),
):
    """Index the image description in the vector collection."""
    return intake.attach_embedding(image_id)
