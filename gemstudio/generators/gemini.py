import base64
from typing import Any, List, Optional

import requests
from google import genai
from google.genai import types

from gemstudio.config.settings import Settings, settings as default_settings
from gemstudio.core.errors import FetchError
from gemstudio.core.models import SourceAsset, VideoOperationHandle
from gemstudio.generators.base import (
    ContentPart,
    GenerationResponse,
    ImageGenerator,
    ResponsePart,
    TextGenerator,
    VideoGenerator,
)
from gemstudio.utils.decorators import smart_retry
from gemstudio.utils.logger import get_logger

logger = get_logger("gemini")


def _enum_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "name", None) or str(value)


def _make_client(api_key: Optional[str], config: Settings) -> genai.Client:
    key = api_key or config.gemini_api_key
    if not key:
        raise ValueError("Missing Gemini API key (set GEMINI_API_KEY)")
    return genai.Client(api_key=key)


def _to_sdk_parts(parts: List[ContentPart]) -> List[types.Part]:
    sdk_parts = []
    for part in parts:
        if part.data is not None:
            sdk_parts.append(types.Part.from_bytes(data=part.data, mime_type=part.mime_type or "image/png"))
        elif part.text:
            sdk_parts.append(types.Part.from_text(text=part.text))
    return sdk_parts


def normalize_response(response: Any) -> GenerationResponse:
    """Flattens a generate_content response into a GenerationResponse."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = _enum_name(getattr(feedback, "block_reason", None)) if feedback else None

    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return GenerationResponse(parts=[], finish_reason=None, block_reason=block_reason)

    candidate = candidates[0]
    content = getattr(candidate, "content", None)
    parts: List[ResponsePart] = []
    for part in (getattr(content, "parts", None) or []):
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            data = inline.data
            # data may be bytes or base64 string
            if isinstance(data, str):
                data = base64.b64decode(data)
            parts.append(ResponsePart(data=data, mime_type=inline.mime_type or "image/png"))
        elif getattr(part, "text", None):
            parts.append(ResponsePart(text=part.text))

    return GenerationResponse(
        parts=parts,
        finish_reason=_enum_name(getattr(candidate, "finish_reason", None)),
        block_reason=block_reason,
    )


def handle_from_operation(operation: Any) -> VideoOperationHandle:
    """Builds an immutable handle from a google-genai video operation."""
    uri = None
    result = getattr(operation, "response", None) or getattr(operation, "result", None)
    videos = getattr(result, "generated_videos", None) if result is not None else None
    if videos:
        video = getattr(videos[0], "video", None)
        uri = getattr(video, "uri", None) if video is not None else None

    error = getattr(operation, "error", None)
    return VideoOperationHandle(
        name=getattr(operation, "name", None) or "",
        done=bool(getattr(operation, "done", False)),
        asset_uri=uri,
        error=str(error) if error else None,
        operation=operation,
    )


class GeminiImageGenerator(ImageGenerator):
    """
    Integration with Gemini image generation (generate_content with IMAGE modality).
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[genai.Client] = None, config: Settings = default_settings):
        self.model = model or config.image_model
        self.client = client or _make_client(api_key, config)

    def _config(self, aspect_ratio: str) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
        )

    def generate(self, parts: List[ContentPart], aspect_ratio: str = "1:1") -> GenerationResponse:
        response = self.client.models.generate_content(
            model=self.model,
            contents=_to_sdk_parts(parts),
            config=self._config(aspect_ratio),
        )
        return normalize_response(response)

    async def generate_async(self, parts: List[ContentPart], aspect_ratio: str = "1:1") -> GenerationResponse:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=_to_sdk_parts(parts),
            config=self._config(aspect_ratio),
        )
        return normalize_response(response)


class GeminiVideoGenerator(VideoGenerator):
    """
    Integration with Veo through the google-genai long-running operations API.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[genai.Client] = None, config: Settings = default_settings):
        self.model = model or config.video_model
        self.resolution = config.video_resolution
        self.fetch_timeout = config.fetch_timeout
        self.api_key = api_key or config.gemini_api_key
        self.client = client or _make_client(api_key, config)

    def _request(self, prompt: str, image: SourceAsset, aspect_ratio: str) -> dict:
        return dict(
            model=self.model,
            prompt=prompt,
            image=types.Image(image_bytes=image.data, mime_type=image.media_type),
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                resolution=self.resolution,
                aspect_ratio=aspect_ratio,
            ),
        )

    def submit(self, prompt: str, image: SourceAsset, aspect_ratio: str = "9:16") -> VideoOperationHandle:
        operation = self.client.models.generate_videos(**self._request(prompt, image, aspect_ratio))
        return handle_from_operation(operation)

    async def submit_async(self, prompt: str, image: SourceAsset, aspect_ratio: str = "9:16") -> VideoOperationHandle:
        operation = await self.client.aio.models.generate_videos(**self._request(prompt, image, aspect_ratio))
        return handle_from_operation(operation)

    def refresh(self, handle: VideoOperationHandle) -> VideoOperationHandle:
        return handle_from_operation(self.client.operations.get(handle.operation))

    async def refresh_async(self, handle: VideoOperationHandle) -> VideoOperationHandle:
        return handle_from_operation(await self.client.aio.operations.get(handle.operation))

    @smart_retry(retries=3, delay=1, backoff=2)
    def download(self, uri: str) -> bytes:
        # The download link only serves the MP4 bytes when the API key is appended
        try:
            resp = requests.get(uri, params={"key": self.api_key}, timeout=self.fetch_timeout)
        except requests.Timeout as e:
            raise TimeoutError(f"Video download timed out: {e}") from e
        except requests.RequestException as e:
            raise ConnectionError(f"Video download failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise FetchError(f"Video download returned HTTP {resp.status_code}", url=uri, status_code=resp.status_code)
        return resp.content


class GeminiTextGenerator(TextGenerator):
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[genai.Client] = None, config: Settings = default_settings):
        self.model = model or config.text_model
        self.client = client or _make_client(api_key, config)

    def generate_text(self, prompt: str) -> str:
        response = self.client.models.generate_content(model=self.model, contents=prompt)
        return response.text or ""

    async def generate_text_async(self, prompt: str) -> str:
        response = await self.client.aio.models.generate_content(model=self.model, contents=prompt)
        return response.text or ""
