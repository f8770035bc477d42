"""
image_service.py

This module generates an image for a prompt and stores it as an embeddable data URI
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from chatgateway.api.api_models import Principal
from chatgateway.api.errors import BillingRequired, GatewayError, InvalidInput, NoContent, PersistenceError, ProviderError
from chatgateway.api.models import GeneratedImage
from chatgateway.providers.images import ASPECT_RATIO_SIZES


logger = logging.getLogger(__name__)


def is_billing_error(error: Exception) -> bool:
    text = str(error).lower()
    return "quota" in text or "billing" in text


class ImageGenerationService:
    """Non-conversational sibling of the Stream Relay: one synchronous provider call per request."""

    def __init__(self, db: Session, image_provider):
        self.db = db
        self.image_provider = image_provider

    async def generate(self, principal: Principal, prompt: Optional[str], aspect_ratio: str = "1:1") -> GeneratedImage:
        """Generate an image and persist it for the caller.

        Args:
            principal (Principal): The caller.
            prompt (Optional[str]): Text prompt.
            aspect_ratio (str): Aspect-ratio hint, one of ASPECT_RATIO_SIZES.

        Returns:
            GeneratedImage: The stored record, with the image embedded as a data URI.

        Raises:
            InvalidInput: If the prompt is blank or the aspect ratio unsupported.
            BillingRequired: If the provider rejected the request for quota or billing reasons.
            NoContent: If the provider answered without an embeddable payload.
            ProviderError: For any other provider failure.
            PersistenceError: If the record cannot be stored.
        """
        if not prompt or not prompt.strip():
            raise InvalidInput("Prompt is required")
        aspect_ratio = aspect_ratio or "1:1"
        if aspect_ratio not in ASPECT_RATIO_SIZES:
            raise InvalidInput(
                f"Unsupported aspect ratio {aspect_ratio}; use one of {', '.join(ASPECT_RATIO_SIZES)}"
            )

        try:
            payload = await self.image_provider.generate(prompt, aspect_ratio)
        except GatewayError:
            raise
        except Exception as e:
            if is_billing_error(e):
                logger.warning(f"Image generation rejected for billing: {str(e)}")
                raise BillingRequired()
            logger.error(f"Image generation error: {str(e)}", exc_info=True)
            raise ProviderError("Failed to generate image", status_code=500)

        if payload is None:
            raise NoContent()

        image = GeneratedImage(
            user_id=principal.id,
            prompt=prompt,
            image_url=f"data:{payload.mime_type};base64,{payload.data}",
            aspect_ratio=aspect_ratio,
        )
        try:
            self.db.add(image)
            self.db.commit()
            self.db.refresh(image)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save generated image: {str(e)}")
            raise PersistenceError("Failed to save image")
        return image

    def list_images(self, principal: Principal) -> List[GeneratedImage]:
        return self.db.exec(
            select(GeneratedImage)
            .where(GeneratedImage.user_id == principal.id)
            .order_by(GeneratedImage.created_at.desc(), GeneratedImage.id.desc())
        ).all()
