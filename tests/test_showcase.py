import asyncio

import pytest

from gemstudio.core.errors import GenerationFailed, NoImageReturned, SafetyBlocked
from gemstudio.core.models import FailureKind, GenerationRequest, SourceAsset
from gemstudio.engine.adapters import ANGLES, JewelryShowcaseAdapter
from gemstudio.generators.base import GenerationResponse, ImageGenerator, ResponsePart
from gemstudio.generators.mock import MockImageGenerator, render_mock_png
from gemstudio.pipeline.showcase import ShowcaseOrchestrator, extract_image

LABELS = [a.label for a in ANGLES]


def _request(make_png, **kwargs) -> GenerationRequest:
    source = SourceAsset(data=make_png(), media_type="image/png", name="ring.png")
    return GenerationRequest(source=source, description="Elegant model in a black dress", **kwargs)


class DelayedGenerator(ImageGenerator):
    """Answers each angle after a scripted delay and tracks how many calls overlap."""

    model = "delayed"

    def __init__(self, delays):
        self.delays = delays
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate_async(self, parts, aspect_ratio="1:1"):
        prompt = "\n".join(p.text for p in parts if p.text)
        delay = next((d for needle, d in self.delays.items() if needle in prompt), 0)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(delay)
        finally:
            self.in_flight -= 1

        png = render_mock_png(prompt, (64, 64))
        return GenerationResponse(parts=[ResponsePart(data=png, mime_type="image/png")], finish_reason="STOP")


def test_all_angles_succeed_in_catalog_order(make_png):
    orchestrator = ShowcaseOrchestrator(MockImageGenerator())
    result = asyncio.run(orchestrator.generate(_request(make_png)))

    assert [s.angle_label for s in result] == LABELS
    assert len({s.id for s in result}) == 3
    assert not result.failures
    assert all(s.image.startswith(b"\x89PNG") for s in result)


def test_safety_block_on_middle_angle_is_dropped(make_png):
    generator = MockImageGenerator(fail_on={"Full body fashion shot": "safety"})
    result = asyncio.run(ShowcaseOrchestrator(generator).generate(_request(make_png)))

    assert [s.angle_label for s in result] == ["Close-up", "Lifestyle"]
    assert result.is_partial
    assert result.requested == 3
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.angle_label == "Full body"
    assert failure.kind is FailureKind.SAFETY_BLOCKED
    assert failure.reason == "Blocked by safety filters."


def test_text_instead_of_image_is_reported(make_png):
    generator = MockImageGenerator(fail_on={"Candid lifestyle": "text"})
    result = asyncio.run(ShowcaseOrchestrator(generator).generate(_request(make_png)))

    assert len(result) == 2
    failure = result.failures[0]
    assert failure.kind is FailureKind.NO_IMAGE
    assert failure.reason.startswith("Model returned text instead of image:")


def test_backend_error_is_isolated(make_png):
    generator = MockImageGenerator(fail_on={"Extreme close-up": "error"})
    result = asyncio.run(ShowcaseOrchestrator(generator).generate(_request(make_png)))

    assert [s.angle_label for s in result] == ["Full body", "Lifestyle"]
    assert result.failures[0].kind is FailureKind.ERROR


def test_every_angle_failing_raises_with_unique_reasons(make_png):
    generator = MockImageGenerator(fail_on={"Shot Type": "safety"})

    with pytest.raises(GenerationFailed) as exc:
        asyncio.run(ShowcaseOrchestrator(generator).generate(_request(make_png)))

    assert str(exc.value) == "Generation failed: Blocked by safety filters."
    assert len(exc.value.failures) == 3
    assert generator.calls == 3


def test_slow_angle_times_out_without_blocking_siblings(make_png):
    generator = DelayedGenerator({"Candid lifestyle": 5})
    orchestrator = ShowcaseOrchestrator(generator, angle_timeout=0.1)

    result = asyncio.run(orchestrator.generate(_request(make_png)))

    assert [s.angle_label for s in result] == ["Close-up", "Full body"]
    assert result.failures[0].kind is FailureKind.TIMEOUT


def test_angles_run_concurrently_and_keep_order(make_png):
    # Close-up finishes last
    generator = DelayedGenerator({"Extreme close-up": 0.15, "Full body": 0.1, "Candid lifestyle": 0.05})
    result = asyncio.run(ShowcaseOrchestrator(generator).generate(_request(make_png)))

    assert generator.max_in_flight == 3
    assert [s.angle_label for s in result] == LABELS


def test_adapter_includes_background_when_given(make_png):
    adapter = JewelryShowcaseAdapter()
    background = SourceAsset(data=make_png(color=(200, 200, 200)), media_type="image/png")

    plain = adapter.build(_request(make_png), ANGLES[0])
    with_bg = adapter.build(_request(make_png, background=background), ANGLES[0])

    assert len(plain) == 2
    assert len(with_bg) == 3
    assert with_bg[1].data == background.data
    assert "background image" in with_bg[-1].text
    assert ANGLES[0].prompt_suffix in plain[-1].text


def test_invalid_aspect_ratio_is_rejected(make_png):
    with pytest.raises(ValueError):
        _request(make_png, aspect_ratio="2:1")


def test_extract_image_prompt_block():
    with pytest.raises(SafetyBlocked):
        extract_image(GenerationResponse(parts=[], block_reason="PROHIBITED_CONTENT"))


def test_extract_image_empty_response():
    with pytest.raises(NoImageReturned) as exc:
        extract_image(GenerationResponse(parts=[], finish_reason="STOP"))
    assert str(exc.value) == "No image generated."


def test_extract_image_returns_bytes_and_mime_type():
    parts = [ResponsePart(text="Here is your shot"), ResponsePart(data=b"\x89PNG data", mime_type=None)]

    data, mime_type = extract_image(GenerationResponse(parts=parts, finish_reason="STOP"))

    assert data == b"\x89PNG data"
    assert mime_type == "image/png"
