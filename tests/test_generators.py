import asyncio
import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from gemstudio.config.settings import Settings
from gemstudio.core.errors import FetchError
from gemstudio.generators.factory import build_backends
from gemstudio.generators.gemini import GeminiVideoGenerator, handle_from_operation, normalize_response
from gemstudio.generators.mock import MockImageGenerator, MockVideoGenerator
from gemstudio.utils.decorators import smart_retry


def _response(parts, finish_reason="STOP", block_reason=None):
    candidate = SimpleNamespace(content=SimpleNamespace(parts=parts), finish_reason=SimpleNamespace(name=finish_reason))
    feedback = SimpleNamespace(block_reason=SimpleNamespace(name=block_reason)) if block_reason else None
    return SimpleNamespace(candidates=[candidate], prompt_feedback=feedback)


def test_normalize_response_decodes_inline_image():
    encoded = base64.b64encode(b"png-bytes").decode("ascii")
    parts = [
        SimpleNamespace(inline_data=None, text="Here you go"),
        SimpleNamespace(inline_data=SimpleNamespace(data=encoded, mime_type="image/png"), text=None),
    ]
    normalized = normalize_response(_response(parts))

    assert normalized.finish_reason == "STOP"
    assert normalized.parts[0].text == "Here you go"
    assert normalized.parts[1].data == b"png-bytes"


def test_normalize_response_without_candidates_keeps_block_reason():
    response = SimpleNamespace(candidates=[], prompt_feedback=SimpleNamespace(block_reason=SimpleNamespace(name="SAFETY")))
    normalized = normalize_response(response)
    assert normalized.parts == []
    assert normalized.block_reason == "SAFETY"


def test_handle_from_finished_operation():
    video = SimpleNamespace(video=SimpleNamespace(uri="https://example.com/v.mp4?alt=media"))
    operation = SimpleNamespace(name="operations/abc", done=True, error=None, response=SimpleNamespace(generated_videos=[video]))

    handle = handle_from_operation(operation)

    assert handle.done
    assert handle.asset_uri == "https://example.com/v.mp4?alt=media"
    assert handle.operation is operation


def test_handle_from_pending_operation():
    handle = handle_from_operation(SimpleNamespace(name="operations/abc", done=None, error=None, response=None))
    assert not handle.done
    assert handle.asset_uri is None


def test_video_download_appends_api_key():
    generator = GeminiVideoGenerator(api_key="secret", client=MagicMock())
    resp = MagicMock(status_code=200, content=b"mp4")

    with patch("gemstudio.generators.gemini.requests.get", return_value=resp) as get:
        assert generator.download("https://example.com/v.mp4?alt=media") == b"mp4"

    assert get.call_args.kwargs["params"] == {"key": "secret"}


def test_video_download_http_error_is_not_retried():
    generator = GeminiVideoGenerator(api_key="secret", client=MagicMock())

    with patch("gemstudio.generators.gemini.requests.get", return_value=MagicMock(status_code=403)) as get:
        with pytest.raises(FetchError):
            generator.download("https://example.com/v.mp4")

    assert get.call_count == 1


def test_smart_retry_recovers_from_transient_errors():
    calls = []

    @smart_retry(retries=3, delay=0)
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3


def test_smart_retry_gives_up():
    @smart_retry(retries=2, delay=0)
    async def always_down():
        raise TimeoutError("slow")

    with pytest.raises(ConnectionError, match="Max retries exceeded"):
        asyncio.run(always_down())


def test_build_backends_falls_back_to_mocks():
    backends = build_backends(Settings(gemini_api_key=None))
    assert isinstance(backends.image, MockImageGenerator)
    assert isinstance(backends.video, MockVideoGenerator)
