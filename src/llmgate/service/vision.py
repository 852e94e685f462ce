"""VisionService -- 图像分析

alt 文本 / SEO 标题 / 详细描述 / 自定义 prompt 分析。
*_batch 变体对每张图像各调用一次，结果顺序与输入一致。
"""

import asyncio
import re
from urllib.parse import urlsplit

from llmgate.core.exceptions import InvalidArgumentError
from llmgate.core.models import DetailLevel, VisionOptions, VisionResponse

from .manager import LlmServiceManager

PROMPT_ALT_TEXT = (
    "Generate a concise alt text for this image, under 125 characters, focused on "
    "essential information for screen readers. Be descriptive but brief."
)
PROMPT_SEO_TITLE = (
    "Generate an SEO-optimized title for this image, under 60 characters, that is "
    "compelling and keyword-rich for search rankings."
)
PROMPT_DESCRIPTION = (
    "Provide a comprehensive description of this image including subjects, setting, "
    "colors, mood, composition, and notable details."
)

_DATA_URI_RE = re.compile(r"^data:image/(png|jpeg|jpg|gif|webp);base64,")


def validate_image_reference(image: str) -> None:
    """http(s) URL（带 host）或 base64 图像 data URI"""
    if isinstance(image, str):
        if _DATA_URI_RE.match(image):
            return
        parts = urlsplit(image)
        if parts.scheme in ("http", "https") and parts.netloc:
            return
    raise InvalidArgumentError("Invalid image URL or base64 data URI", field="image")


class VisionService:
    def __init__(self, manager: LlmServiceManager) -> None:
        self._manager = manager

    async def analyze_image_full(
        self,
        image: str,
        prompt: str,
        options: VisionOptions | None = None,
    ) -> VisionResponse:
        options = options or VisionOptions()
        validate_image_reference(image)
        content = [
            {"type": "text", "text": prompt},
            {
                "type": "image_url",
                "image_url": {"url": image, "detail": options.detail_level or DetailLevel.AUTO.value},
            },
        ]
        return await self._manager.vision(content, options)

    async def analyze_image(self, image: str, prompt: str, options: VisionOptions | None = None) -> str:
        response = await self.analyze_image_full(image, prompt, options)
        return response.description

    async def analyze_image_batch(
        self,
        images: list[str],
        prompt: str,
        options: VisionOptions | None = None,
    ) -> list[str]:
        # 先整体校验，避免部分图像已发出请求后才失败
        for image in images:
            validate_image_reference(image)
        return list(await asyncio.gather(*(self.analyze_image(image, prompt, options) for image in images)))

    async def generate_alt_text(self, image: str, options: VisionOptions | None = None) -> str:
        return await self.analyze_image(image, PROMPT_ALT_TEXT, self._alt_text_options(options))

    async def generate_alt_text_batch(self, images: list[str], options: VisionOptions | None = None) -> list[str]:
        return await self.analyze_image_batch(images, PROMPT_ALT_TEXT, self._alt_text_options(options))

    async def generate_title(self, image: str, options: VisionOptions | None = None) -> str:
        return await self.analyze_image(image, PROMPT_SEO_TITLE, self._title_options(options))

    async def generate_title_batch(self, images: list[str], options: VisionOptions | None = None) -> list[str]:
        return await self.analyze_image_batch(images, PROMPT_SEO_TITLE, self._title_options(options))

    async def generate_description(self, image: str, options: VisionOptions | None = None) -> str:
        return await self.analyze_image(image, PROMPT_DESCRIPTION, self._description_options(options))

    async def generate_description_batch(
        self,
        images: list[str],
        options: VisionOptions | None = None,
    ) -> list[str]:
        return await self.analyze_image_batch(images, PROMPT_DESCRIPTION, self._description_options(options))

    @staticmethod
    def _alt_text_options(options: VisionOptions | None) -> VisionOptions:
        return (options or VisionOptions()).with_defaults(max_tokens=100, temperature=0.5)

    @staticmethod
    def _title_options(options: VisionOptions | None) -> VisionOptions:
        return (options or VisionOptions()).with_defaults(max_tokens=50, temperature=0.7)

    @staticmethod
    def _description_options(options: VisionOptions | None) -> VisionOptions:
        return (options or VisionOptions()).with_defaults(max_tokens=500, temperature=0.7)
