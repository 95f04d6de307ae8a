"""Backend selection: Gemini when an API key is configured, offline mocks otherwise."""
from dataclasses import dataclass

from gemstudio.config.settings import Settings
from gemstudio.generators.base import ImageGenerator, TextGenerator, VideoGenerator
from gemstudio.generators.mock import MockImageGenerator, MockTextGenerator, MockVideoGenerator
from gemstudio.utils.logger import get_logger

logger = get_logger("backends")


@dataclass
class Backends:
    image: ImageGenerator
    video: VideoGenerator
    text: TextGenerator


def build_backends(config: Settings) -> Backends:
    if config.mock_mode:
        logger.warning("⚠️ No Gemini API key configured, using offline mock backends.")
        return Backends(image=MockImageGenerator(), video=MockVideoGenerator(), text=MockTextGenerator())

    # google-genai is only needed for live backends
    from gemstudio.generators.gemini import GeminiImageGenerator, GeminiTextGenerator, GeminiVideoGenerator

    return Backends(
        image=GeminiImageGenerator(config=config),
        video=GeminiVideoGenerator(config=config),
        text=GeminiTextGenerator(config=config),
    )
