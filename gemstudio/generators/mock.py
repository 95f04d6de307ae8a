import base64
import hashlib
import io
import time
from typing import Dict, List, Optional

from PIL import Image

from gemstudio.core.models import SourceAsset, VideoOperationHandle
from gemstudio.generators.base import (
    ContentPart,
    GenerationResponse,
    ImageGenerator,
    ResponsePart,
    TextGenerator,
    VideoGenerator,
)
from gemstudio.utils.logger import get_logger

logger = get_logger("mock")

# Valid 1-second H.264 MP4 (black frame) - Browser Compatible
MOCK_MP4_B64 = "AAAAIGZ0eXBpc29tAAACAGlzb21pc28yYXZjMW1wNDEAAAAIZnJlZQAAAsptZGF0AAACrgYF//+//7fcP2TMuEAAAAAnZGlmZgH/gAAAAAAAAAAABgAAAAAsZGMgH/4AAAAAAAAGAAAAACxhY3AgH/4AAAAAAAAGAAAAABZkY3AgH/4AAAAAAAAGAAAAABZkY3AgH/4AAAAAAAAGAAAAABZkY3AgH/4AAAAAAAAGAAAAABhjbXAgH/4AAQAAAAAAABhjbXAgH/4AAQAAAAAAABhjbXAgH/4AAQAAAAAAABhjbXAgH/4AAQAAAAAAABhjbXAgH/4AAQAAAAAAABhjbXAgH/4AAQAAAAAAACBhY3AgH/4AAQAAAAAAAEG1lZGlhIGRhdGEgbmV0AAAAXuBtb292AAAAbG12aGQAAAAAAAAAAAAAAAAAAAPoAAAD6AABAAABAAAAAAAAAAAAAAAAAQAAAAAAAAAAAAAAAAAAAAEAAAAAAAAAAAAAAAAAAEAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAACAAABWHRyYWsAAABcdGtoZAAAAAMAAAAAAAAAAAAAAAEAAAAAAAAD6AAAAAAAAAAAAAAAAAAAAAAAAQAAAAAAAAAAAAAAAAAAAAEAAAAAAAAAAAAAAAAAAEAAAAAAQAAAAEAAAAAAACRlZHRzAAAAHGVsc3QAAAAAAAAAAQAAA+gAAAAAAAEAAAAAAABibWRpYQAAACBtZGhkAAAAAAAAAAAAAAAAAAD6AAAA+gAA1gAAAAAAHaWhZGxyAAAAAAAAAAB2aWRlAAAAAAAAAAAAAAAAVmlkZW9IYW5kbGVyAAAAATFtaW5mAAAAFHZtaGQAAAARAAAAAAAAAAAAAAApJGRpbmYAAAAcZHJlZgAAAAAAAAABAAAADHVybCAAAAABAAABM3N0YmwAAACxc3RzZAAAAAAAAAABAAAAhWF2YzEAAAAAAAAAAQAAAAAAAAAAAAAAAAAAAAABAABIaAAAAEgAAAAAAAAAAQAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAABj//wAAAFxhdmNDAWQAJf/hABlnZAAlrYy+F/LwYBAAZo6OMAQAAwAAAwB4kR7ADyQAAAMAAAMAd5EewA8kRUF0AAAAAElzdHQAAAAAAAAAAQAAAAEAAA1zdHNjAAAAAAAAAAEAAAABAAAAAQAAAAEAAAAcc3RzegAAAAAAAAAQAAAAAQAAAAEAAAAAAAAAFHN0Y28AAAAAAAAAAQAAAIAAAAAYc3RzcwAAAAAAAAABAAAAAQ=="

# Long side of mock renders, per aspect ratio
MOCK_LONG_SIDE = 512


def mock_image_size(aspect_ratio: str) -> tuple:
    try:
        w, h = (int(x) for x in aspect_ratio.split(":"))
    except ValueError:
        w, h = 1, 1
    if w >= h:
        return MOCK_LONG_SIDE, max(1, MOCK_LONG_SIDE * h // w)
    return max(1, MOCK_LONG_SIDE * w // h), MOCK_LONG_SIDE


def render_mock_png(seed_text: str, size: tuple) -> bytes:
    """Solid swatch whose color is derived from the prompt, so every angle differs."""
    digest = hashlib.md5(seed_text.encode("utf-8")).digest()
    img = Image.new("RGB", size, (digest[0], digest[1], digest[2]))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


class MockImageGenerator(ImageGenerator):
    """
    Offline image backend used for tests and local runs.

    `fail_on` maps a prompt substring (e.g. an angle suffix) to a scripted
    behavior: "safety", "text", "empty" or "error".
    """

    model = "mock-image"

    def __init__(self, fail_on: Optional[Dict[str, str]] = None):
        self.fail_on = fail_on or {}
        self.calls = 0

    def generate(self, parts: List[ContentPart], aspect_ratio: str = "1:1") -> GenerationResponse:
        self.calls += 1
        prompt = "\n".join(p.text for p in parts if p.text)

        for needle, behavior in self.fail_on.items():
            if needle in prompt:
                if behavior == "safety":
                    return GenerationResponse(parts=[], finish_reason="SAFETY")
                if behavior == "text":
                    return GenerationResponse(
                        parts=[ResponsePart(text="I can't create that image, but here is a description instead.")],
                        finish_reason="STOP",
                    )
                if behavior == "empty":
                    return GenerationResponse(parts=[], finish_reason="STOP")
                raise RuntimeError(f"Mock backend failure for '{needle}'")

        png = render_mock_png(prompt, mock_image_size(aspect_ratio))
        return GenerationResponse(parts=[ResponsePart(data=png, mime_type="image/png")], finish_reason="STOP")


class MockVideoGenerator(VideoGenerator):
    """Offline video backend: finishes after `polls_until_done` refreshes."""

    model = "mock-video"

    def __init__(self, polls_until_done: int = 0, with_asset: bool = True):
        self.polls_until_done = polls_until_done
        self.with_asset = with_asset
        self.submissions = 0
        self.refreshes = 0
        self.downloads: List[str] = []

    def _handle(self, name: str, polls: int) -> VideoOperationHandle:
        done = polls >= self.polls_until_done
        uri = f"mock://videos/{name}.mp4?alt=media" if done and self.with_asset else None
        return VideoOperationHandle(name=name, done=done, asset_uri=uri, operation=polls)

    def submit(self, prompt: str, image: SourceAsset, aspect_ratio: str = "9:16") -> VideoOperationHandle:
        self.submissions += 1
        prompt_hash = hashlib.md5(prompt.encode("utf-8")).hexdigest()[:8]
        name = f"operations/mock-{prompt_hash}-{int(time.time() * 1000)}"
        logger.info(f"🎬 Mock video operation {name} submitted.")
        return self._handle(name, 0)

    def refresh(self, handle: VideoOperationHandle) -> VideoOperationHandle:
        self.refreshes += 1
        return self._handle(handle.name, (handle.operation or 0) + 1)

    def download(self, uri: str) -> bytes:
        self.downloads.append(uri)
        return base64.b64decode(MOCK_MP4_B64)


class MockTextGenerator(TextGenerator):
    model = "mock-text"

    def generate_text(self, prompt: str) -> str:
        return "New in the collection ✨ Crafted to be treasured. Link in bio. #jewelry #luxury #handmade #gold #style"
