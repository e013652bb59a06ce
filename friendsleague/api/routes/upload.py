"""Media upload route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from friendsleague.api.routes import service_error_response
from friendsleague.services import s3_service
from friendsleague.api.auth_dependencies import require_user
from friendsleague.models.schemas import PresignedUrlRequest, PresignedUrlResponse
from friendsleague.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/upload/presigned-url", response_model=PresignedUrlResponse)
async def get_presigned_url(
    payload: PresignedUrlRequest,
    user: dict = Depends(require_user),
):
    """
    Get a presigned S3 PUT URL for uploading chat media.

    The client uploads the file directly to S3 and then sends the returned
    media_url in a message.
    """
    try:
        result = s3_service.generate_presigned_upload_url(
            payload.file_name, payload.file_type, payload.file_size
        )
        logger.info(f"User {user['id']} requested upload URL for {result['key']}")
        return result
    except ServiceError as e:
        raise service_error_response(e)
    except Exception as e:
        logger.error(f"Error generating presigned URL: {e}")
        raise HTTPException(status_code=500, detail="Error generating upload URL")
