"""VisionService 单元测试"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from llmgate.core.exceptions import InvalidArgumentError
from llmgate.core.models import VisionOptions, VisionResponse
from llmgate.service.manager import LlmServiceManager
from llmgate.service.vision import PROMPT_ALT_TEXT, VisionService, validate_image_reference

IMAGE_URL = "https://example.com/cat.png"


@pytest.fixture
def manager() -> MagicMock:
    manager = MagicMock(spec=LlmServiceManager)
    manager.vision = AsyncMock(return_value=VisionResponse(description="A cat", model="gpt-5.2", provider="openai"))
    return manager


class TestValidateImageReference:
    @pytest.mark.parametrize(
        "image",
        [IMAGE_URL, "http://example.com/a.jpg", "data:image/png;base64,iVBORw0KGgo="],
    )
    def test_valid(self, image):
        validate_image_reference(image)

    @pytest.mark.parametrize(
        "image",
        ["", "not a url", "ftp://example.com/a.png", "https://", "data:text/plain;base64,aGk="],
    )
    def test_invalid(self, image):
        with pytest.raises(InvalidArgumentError) as exc_info:
            validate_image_reference(image)
        assert str(exc_info.value) == "Invalid image URL or base64 data URI"


class TestAnalyze:
    async def test_content_parts(self, manager):
        description = await VisionService(manager).analyze_image(IMAGE_URL, "What is this?")

        assert description == "A cat"
        content, _ = manager.vision.await_args.args
        assert content == [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": IMAGE_URL, "detail": "auto"}},
        ]

    async def test_detail_level_forwarded(self, manager):
        await VisionService(manager).analyze_image(IMAGE_URL, "Describe", VisionOptions.detailed())

        content = manager.vision.await_args.args[0]
        assert content[1]["image_url"]["detail"] == "high"

    async def test_invalid_image_no_call(self, manager):
        with pytest.raises(InvalidArgumentError):
            await VisionService(manager).analyze_image("file:///etc/passwd", "Describe")
        manager.vision.assert_not_awaited()


class TestPresets:
    @pytest.mark.parametrize(
        ("method", "max_tokens", "temperature"),
        [
            ("generate_alt_text", 100, 0.5),
            ("generate_title", 50, 0.7),
            ("generate_description", 500, 0.7),
        ],
    )
    async def test_defaults(self, manager, method, max_tokens, temperature):
        await getattr(VisionService(manager), method)(IMAGE_URL)

        options = manager.vision.await_args.args[1]
        assert options.max_tokens == max_tokens
        assert options.temperature == temperature

    async def test_caller_options_win(self, manager):
        await VisionService(manager).generate_alt_text(IMAGE_URL, VisionOptions(max_tokens=60))

        options = manager.vision.await_args.args[1]
        assert options.max_tokens == 60
        assert options.temperature == 0.5

    async def test_alt_text_prompt(self, manager):
        await VisionService(manager).generate_alt_text(IMAGE_URL)

        content = manager.vision.await_args.args[0]
        assert content[0] == {"type": "text", "text": PROMPT_ALT_TEXT}


class TestBatch:
    async def test_order_preserved(self, manager):
        images = ["https://example.com/1.png", "https://example.com/2.png"]

        async def describe(content, options):
            return VisionResponse(description=content[1]["image_url"]["url"].rsplit("/", 1)[-1])

        manager.vision.side_effect = describe

        assert await VisionService(manager).generate_title_batch(images) == ["1.png", "2.png"]

    async def test_validates_all_before_any_call(self, manager):
        with pytest.raises(InvalidArgumentError):
            await VisionService(manager).generate_description_batch([IMAGE_URL, "bogus"])
        manager.vision.assert_not_awaited()

    async def test_empty_batch(self, manager):
        assert await VisionService(manager).analyze_image_batch([], "Describe") == []
