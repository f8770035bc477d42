"""
image_routes.py

This module contains FastAPI Routes for image generation
"""

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from chatgateway.api.api_models import ImageListResponse, ImageRequest, ImageResponse, Principal
from chatgateway.api.context import GatewayContext, get_context
from chatgateway.api.db import get_session
from chatgateway.api.identity import get_current_user
from chatgateway.api.image_service import ImageGenerationService


router = APIRouter(prefix="/images", tags=["images"])


@router.post("/generate", response_model=ImageResponse, status_code=status.HTTP_201_CREATED)
async def generate_image(
    body: ImageRequest,
    current_user: Principal = Depends(get_current_user),
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """Generate an image for the prompt and store it.

    A provider answer without an image is reported with code "no_content" and a
    quota or billing rejection with "billing_required", both distinct from a generic
    "provider_error".
    """
    service = ImageGenerationService(session, context.image_provider)
    image = await service.generate(current_user, body.prompt, body.aspectRatio)
    return {"image": image}


@router.get("", response_model=ImageListResponse)
async def get_images(
    current_user: Principal = Depends(get_current_user),
    context: GatewayContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    """List the caller's generated images, newest first."""
    service = ImageGenerationService(session, context.image_provider)
    return {"images": service.list_images(current_user)}
