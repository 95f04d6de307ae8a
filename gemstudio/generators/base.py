import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from gemstudio.core.models import SourceAsset, VideoOperationHandle


@dataclass(frozen=True)
class ContentPart:
    """One ordered input part of a generation request: inline image bytes or text."""
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    text: Optional[str] = None

    @classmethod
    def image(cls, asset: SourceAsset) -> "ContentPart":
        return cls(data=asset.data, mime_type=asset.media_type)

    @classmethod
    def from_text(cls, text: str) -> "ContentPart":
        return cls(text=text)


@dataclass(frozen=True)
class ResponsePart:
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    text: Optional[str] = None


@dataclass(frozen=True)
class GenerationResponse:
    """Backend-neutral view of a generation response (first candidate only)."""
    parts: List[ResponsePart] = field(default_factory=list)
    finish_reason: Optional[str] = None
    block_reason: Optional[str] = None


class ImageGenerator:
    """
    Abstract interface for image generation backends.
    Any new image model integration must inherit from this class.
    """

    model: str

    def generate(self, parts: List[ContentPart], aspect_ratio: str = "1:1") -> GenerationResponse:
        """
        Generates an image from ordered content parts.

        Args:
            parts: Inline images and text, in the order the model should see them.
            aspect_ratio: Target output ratio (e.g., "1:1", "9:16").

        Returns:
            GenerationResponse with whatever the model returned (image, text or nothing).
        """
        raise NotImplementedError("Subclasses must implement generate()")

    async def generate_async(self, parts: List[ContentPart], aspect_ratio: str = "1:1") -> GenerationResponse:
        """
        Asynchronously generates an image.
        Default implementation wraps the synchronous generate method.
        """
        return await asyncio.to_thread(self.generate, parts=parts, aspect_ratio=aspect_ratio)


class VideoGenerator:
    """
    Abstract interface for long-running video generation backends.
    """

    model: str

    def submit(self, prompt: str, image: SourceAsset, aspect_ratio: str = "9:16") -> VideoOperationHandle:
        """Starts a video operation. Returns a not-yet-done handle."""
        raise NotImplementedError("Subclasses must implement submit()")

    def refresh(self, handle: VideoOperationHandle) -> VideoOperationHandle:
        """Queries the backend for the current state of an operation."""
        raise NotImplementedError("Subclasses must implement refresh()")

    def download(self, uri: str) -> bytes:
        """Fetches the finished asset."""
        raise NotImplementedError("Subclasses must implement download()")

    async def submit_async(self, prompt: str, image: SourceAsset, aspect_ratio: str = "9:16") -> VideoOperationHandle:
        return await asyncio.to_thread(self.submit, prompt, image, aspect_ratio)

    async def refresh_async(self, handle: VideoOperationHandle) -> VideoOperationHandle:
        return await asyncio.to_thread(self.refresh, handle)

    async def download_async(self, uri: str) -> bytes:
        return await asyncio.to_thread(self.download, uri)


class TextGenerator:
    model: str

    def generate_text(self, prompt: str) -> str:
        raise NotImplementedError("Subclasses must implement generate_text()")

    async def generate_text_async(self, prompt: str) -> str:
        return await asyncio.to_thread(self.generate_text, prompt)
