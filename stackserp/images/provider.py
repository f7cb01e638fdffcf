"""Featured image providers. One image per article."""

import re
from typing import Protocol

from openai import OpenAI
from pydantic import BaseModel

_NICHE_STYLES: list[tuple[str, str]] = [
    (r"food|restaurant|cook|recipe|bak",
     "appetizing professional food photography style, warm lighting, shallow depth of field"),
    (r"fashion|beauty|cosmetic|skincare",
     "clean editorial photography style, soft natural lighting, modern aesthetic"),
    (r"tech|saas|software|ai|developer|coding|startup",
     "clean modern flat illustration with a professional tech aesthetic, minimal and sleek"),
    (r"health|fitness|medical|wellness|yoga",
     "bright clean lifestyle photography style, natural and uplifting"),
    (r"finance|banking|invest|insurance|accounting",
     "professional corporate illustration, clean lines, trustworthy blue-toned palette"),
    (r"travel|hotel|tourism|adventure",
     "vivid landscape photography style, cinematic composition, natural colors"),
    (r"education|learning|school|course|tutoring",
     "friendly modern illustration, approachable and colorful, educational context"),
    (r"real.?estate|property|home|interior",
     "professional architectural photography style, bright and inviting interiors"),
    (r"marketing|seo|content|social.?media|agency",
     "clean modern flat illustration with bold accent colors, professional and data-driven feel"),
    (r"ecommerce|shop|retail|product",
     "clean product photography style on minimal background, professional commercial look"),
]
_DEFAULT_STYLE = "clean professional illustration, modern and relevant to the topic"


def image_style_for_niche(niche: str) -> str:
    n = (niche or "").lower()
    for pattern, style in _NICHE_STYLES:
        if re.search(pattern, n):
            return style
    return _DEFAULT_STYLE


class FeaturedImage(BaseModel):
    url: str
    alt: str = ""


class ImageProvider(Protocol):
    def generate(self, prompt: str, alt: str) -> FeaturedImage: ...


class OpenAIImageProvider:
    """Featured image via the OpenAI images API; returns the hosted URL."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "dall-e-3",
        size: str = "1792x1024",
        timeout: float = 120.0,
    ):
        self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=1)
        self._model = model
        self._size = size

    def generate(self, prompt: str, alt: str) -> FeaturedImage:
        response = self._client.images.generate(
            model=self._model,
            prompt=prompt,
            size=self._size,
            n=1,
        )
        url = response.data[0].url if response.data else None
        if not url:
            raise ValueError("Image API returned no URL")
        return FeaturedImage(url=url, alt=alt)
