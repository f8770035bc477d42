"""
images.py

This module wraps the one-shot image generation call to the remote provider
"""

import logging
from typing import Optional

import httpx
from openai import AsyncOpenAI
from pydantic import BaseModel


logger = logging.getLogger(__name__)

# Provider sizes for the supported aspect ratios.
ASPECT_RATIO_SIZES = {
    "1:1": "1024x1024",
    "16:9": "1792x1024",
    "9:16": "1024x1792",
    "4:3": "1408x1056",
    "3:4": "1056x1408",
}


class ImagePayload(BaseModel):
    """An inline image returned by the provider.

    Attributes:
        data (str): Base64 encoded image bytes.
        mime_type (str): Media type of the image.
    """

    data: str
    mime_type: str = "image/png"


class ImageProvider:
    def __init__(
        self,
        *,
        model: str,
        base_url: str,
        api_key: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self.base_url = base_url
        self.api_key = api_key
        self.http_client = http_client
        self._client = None

    def get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(base_url=self.base_url, api_key=self.api_key, http_client=self.http_client)
        return self._client

    async def generate(self, prompt: str, aspect_ratio: str) -> Optional[ImagePayload]:
        """Generate one image and return its first inline payload.

        Args:
            prompt (str): Text prompt.
            aspect_ratio (str): One of the keys of ASPECT_RATIO_SIZES.

        Returns:
            Optional[ImagePayload]: The first embeddable payload, or None when the
            provider answered without one.
        """
        response = await self.get_client().images.generate(
            model=self.model,
            prompt=prompt,
            n=1,
            size=ASPECT_RATIO_SIZES[aspect_ratio],
            response_format="b64_json",
        )

        for image in response.data or []:
            if image.b64_json:
                output_format = getattr(response, "output_format", None) or "png"
                return ImagePayload(data=image.b64_json, mime_type=f"image/{output_format}")

        logger.warning(f"Image provider returned no inline payload for model {self.model}")
        return None

    async def close(self):
        if self._client is not None:
            await self._client.close()
            self._client = None
