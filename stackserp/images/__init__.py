"""Featured image generation."""

from stackserp.images.provider import (
    FeaturedImage,
    ImageProvider,
    OpenAIImageProvider,
    image_style_for_niche,
)

__all__ = ["FeaturedImage", "ImageProvider", "OpenAIImageProvider", "image_style_for_niche"]
