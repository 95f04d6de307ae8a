import asyncio
import time
import uuid
from typing import List, Optional, Sequence, Tuple

from gemstudio.config.settings import Settings, settings as default_settings
from gemstudio.core.errors import GenerationFailed, GenerationTimeout, NoImageReturned, SafetyBlocked
from gemstudio.core.models import (
    Angle,
    AngleFailure,
    AngleSuccess,
    FailureKind,
    GenerationOutcome,
    GenerationRequest,
    ShowcaseResult,
)
from gemstudio.engine.adapters import ANGLES, JewelryShowcaseAdapter, PromptAdapter
from gemstudio.generators.base import GenerationResponse, ImageGenerator
from gemstudio.utils.logger import get_logger

logger = get_logger("showcase")

SAFETY_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "IMAGE_SAFETY", "BLOCKLIST", "SPII", "IMAGE_PROHIBITED_CONTENT"}
TEXT_EXCERPT_CHARS = 50


def extract_image(response: GenerationResponse) -> Tuple[bytes, str]:
    """
    Returns (image bytes, mime type) of the first inline image in the response.

    Raises:
        SafetyBlocked: the model or the prompt filter refused the request.
        NoImageReturned: no image came back; carries any text the model sent.
    """
    for part in response.parts:
        if part.data:
            return part.data, part.mime_type or "image/png"

    text = next((p.text for p in response.parts if p.text), None)
    finish_reason = (response.finish_reason or "").upper()
    logger.warning(
        f"⚠️ No image in response: Reason={response.finish_reason}, "
        f"Text={text[:100] if text else None}"
    )

    if finish_reason in SAFETY_FINISH_REASONS or response.block_reason:
        raise SafetyBlocked("Blocked by safety filters.")
    if text:
        raise NoImageReturned(f"Model returned text instead of image: {text[:TEXT_EXCERPT_CHARS]}...", text_excerpt=text)
    raise NoImageReturned("No image generated.")


def _failure_kind(error: Exception) -> FailureKind:
    if isinstance(error, SafetyBlocked):
        return FailureKind.SAFETY_BLOCKED
    if isinstance(error, NoImageReturned):
        return FailureKind.NO_IMAGE
    if isinstance(error, GenerationTimeout):
        return FailureKind.TIMEOUT
    return FailureKind.ERROR


class ShowcaseOrchestrator:
    """
    Fans one photoshoot request out to every angle in the catalog and keeps
    whatever succeeded. One angle failing never cancels its siblings.
    """

    def __init__(
        self,
        generator: ImageGenerator,
        angles: Sequence[Angle] = ANGLES,
        adapter: Optional[PromptAdapter] = None,
        angle_timeout: Optional[float] = None,
        config: Settings = default_settings,
    ):
        self.generator = generator
        self.angles = tuple(angles)
        self.adapter = adapter or JewelryShowcaseAdapter()
        self.angle_timeout = angle_timeout if angle_timeout is not None else config.angle_timeout

    async def _generate_angle(self, request: GenerationRequest, angle: Angle) -> GenerationOutcome:
        try:
            parts = self.adapter.build(request, angle)
            t0 = time.time()
            try:
                response = await asyncio.wait_for(
                    self.generator.generate_async(parts, aspect_ratio=request.aspect_ratio),
                    timeout=self.angle_timeout,
                )
            except asyncio.TimeoutError as e:
                raise GenerationTimeout(f"Timed out after {self.angle_timeout:g}s.") from e

            image, mime_type = extract_image(response)
            logger.info(f"✅ {angle.label} generated in {time.time() - t0:.1f}s")
            return AngleSuccess(
                id=str(uuid.uuid4()),
                image=image,
                media_type=mime_type,
                angle_label=angle.label,
                prompt_used=angle.prompt_suffix,
            )
        except Exception as e:
            logger.error(f"❌ Error generating {angle.label}: {e}")
            return AngleFailure(angle_label=angle.label, kind=_failure_kind(e), reason=str(e) or "Unknown error")

    async def generate(self, request: GenerationRequest) -> ShowcaseResult:
        """
        Generates one image per angle concurrently.

        Returns:
            ShowcaseResult with the successful angles in catalog order and the
            failures kept as data.

        Raises:
            GenerationFailed: only when every angle failed.
        """
        logger.info(
            f"🚀 Starting photoshoot: {len(self.angles)} angles, ratio {request.aspect_ratio}, "
            f"background={'yes' if request.background else 'no'}"
        )

        # gather keeps submission order regardless of completion order
        outcomes: List[GenerationOutcome] = await asyncio.gather(
            *(self._generate_angle(request, angle) for angle in self.angles)
        )

        successes = tuple(o for o in outcomes if isinstance(o, AngleSuccess))
        failures = tuple(o for o in outcomes if isinstance(o, AngleFailure))

        if not successes:
            unique_reasons = list(dict.fromkeys(f.reason for f in failures))
            raise GenerationFailed(f"Generation failed: {', '.join(unique_reasons)}", failures=list(failures))

        logger.info(f"🏁 Photoshoot complete | {len(successes)}/{len(self.angles)} shots generated")
        return ShowcaseResult(successes=successes, failures=failures)
