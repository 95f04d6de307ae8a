import asyncio
import base64
import os
import time
from unittest.mock import patch

import pytest

from gemstudio.core.errors import FetchError, MissingAsset, PollFailed, SubmissionFailed, VideoCancelled
from gemstudio.core.models import SourceAsset
from gemstudio.engine.adapters import DEFAULT_VIDEO_PROMPT
from gemstudio.generators.mock import MOCK_MP4_B64, MockVideoGenerator
from gemstudio.pipeline.video import VideoOperationPoller

SOURCE = SourceAsset(data=b"\x89PNG fake", media_type="image/png", name="ring.png")


class RecordingVideoGenerator(MockVideoGenerator):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.prompts = []

    def submit(self, prompt, image, aspect_ratio="9:16"):
        self.prompts.append(prompt)
        return super().submit(prompt, image, aspect_ratio)


class FlakyVideoGenerator(MockVideoGenerator):
    """Refresh raises for the first `failures` calls."""

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    def refresh(self, handle):
        if self.failures > 0:
            self.failures -= 1
            self.refreshes += 1
            raise ConnectionError("status endpoint unreachable")
        return super().refresh(handle)


class BrokenDownloadGenerator(MockVideoGenerator):
    def download(self, uri):
        raise ConnectionError("Max retries exceeded")


class RejectingVideoGenerator(MockVideoGenerator):
    def submit(self, prompt, image, aspect_ratio="9:16"):
        raise RuntimeError("quota exhausted")


class HangingVideoGenerator(MockVideoGenerator):
    async def refresh_async(self, handle):
        self.refreshes += 1
        await asyncio.sleep(5)
        return handle


def _poller(generator, tmp_path, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    return VideoOperationPoller(generator, output_root=str(tmp_path), **kwargs)


def test_polls_until_done_then_downloads_once(tmp_path):
    # Not done on submit and on the next two polls, done on the third
    generator = MockVideoGenerator(polls_until_done=3)
    poller = _poller(generator, tmp_path, poll_interval=0.05)

    t0 = time.monotonic()
    video = asyncio.run(poller.generate(SOURCE, "Slow rotation", "9:16"))
    elapsed = time.monotonic() - t0

    assert generator.submissions == 1
    assert generator.refreshes == 3
    assert len(generator.downloads) == 1
    assert elapsed >= 0.14

    assert video.media_type == "video/mp4"
    assert video.prompt == "Slow rotation"
    assert video.file_path.startswith(str(tmp_path))
    with open(video.file_path, "rb") as f:
        assert f.read() == base64.b64decode(MOCK_MP4_B64)

    video.release()
    assert not os.path.exists(video.file_path)


def test_already_done_operation_is_not_polled(tmp_path):
    generator = MockVideoGenerator(polls_until_done=0)
    asyncio.run(_poller(generator, tmp_path).generate(SOURCE, "spin", "16:9"))
    assert generator.refreshes == 0


def test_blank_prompt_uses_default(tmp_path):
    generator = RecordingVideoGenerator()
    video = asyncio.run(_poller(generator, tmp_path).generate(SOURCE, "   ", "9:16"))

    assert generator.prompts == [DEFAULT_VIDEO_PROMPT]
    assert video.prompt == DEFAULT_VIDEO_PROMPT


def test_unsupported_aspect_ratio(tmp_path):
    generator = MockVideoGenerator()
    with pytest.raises(ValueError):
        asyncio.run(_poller(generator, tmp_path).generate(SOURCE, "spin", "1:1"))
    assert generator.submissions == 0


def test_missing_asset_after_done(tmp_path):
    generator = MockVideoGenerator(polls_until_done=1, with_asset=False)

    with pytest.raises(MissingAsset, match="failed to return a download link"):
        asyncio.run(_poller(generator, tmp_path).generate(SOURCE, "spin", "9:16"))

    assert generator.downloads == []


def test_submission_rejected(tmp_path):
    with pytest.raises(SubmissionFailed, match="quota exhausted"):
        asyncio.run(_poller(RejectingVideoGenerator(), tmp_path).generate(SOURCE, "spin", "9:16"))


def test_transient_poll_failure_is_retried(tmp_path):
    generator = FlakyVideoGenerator(failures=1, polls_until_done=1)
    video = asyncio.run(_poller(generator, tmp_path, max_poll_failures=3).generate(SOURCE, "spin", "9:16"))

    assert generator.refreshes == 2
    assert os.path.exists(video.file_path)


def test_repeated_poll_failures_give_up(tmp_path):
    generator = FlakyVideoGenerator(failures=100, polls_until_done=1)

    with pytest.raises(PollFailed):
        asyncio.run(_poller(generator, tmp_path, max_poll_failures=3).generate(SOURCE, "spin", "9:16"))

    assert generator.refreshes == 3


def test_hanging_poll_times_out(tmp_path):
    generator = HangingVideoGenerator(polls_until_done=1)
    poller = _poller(generator, tmp_path, poll_timeout=0.05, max_poll_failures=1)

    with pytest.raises(PollFailed, match="timed out"):
        asyncio.run(poller.generate(SOURCE, "spin", "9:16"))


def test_download_failure_is_a_fetch_error(tmp_path):
    with pytest.raises(FetchError):
        asyncio.run(_poller(BrokenDownloadGenerator(), tmp_path).generate(SOURCE, "spin", "9:16"))


def test_cancel_event_stops_polling(tmp_path):
    generator = MockVideoGenerator(polls_until_done=10_000)
    poller = _poller(generator, tmp_path, poll_interval=0.02)

    async def scenario():
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, cancel.set)
        with pytest.raises(VideoCancelled):
            await poller.generate(SOURCE, "spin", "9:16", cancel_event=cancel)
        polls_at_cancel = generator.refreshes
        await asyncio.sleep(0.1)
        return polls_at_cancel

    polls_at_cancel = asyncio.run(scenario())

    assert polls_at_cancel > 0
    assert generator.refreshes == polls_at_cancel
    assert generator.downloads == []
    assert not os.path.exists(os.path.join(str(tmp_path), "videos")) or not os.listdir(os.path.join(str(tmp_path), "videos"))


def test_task_cancellation_stops_polling(tmp_path):
    generator = MockVideoGenerator(polls_until_done=10_000)
    poller = _poller(generator, tmp_path, poll_interval=0.02)

    async def scenario():
        task = asyncio.create_task(poller.generate(SOURCE, "spin", "9:16"))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        # let an already-dispatched status call land
        await asyncio.sleep(0.01)
        polls_at_cancel = generator.refreshes
        await asyncio.sleep(0.1)
        return polls_at_cancel

    polls_at_cancel = asyncio.run(scenario())
    assert generator.refreshes == polls_at_cancel


def test_concurrent_operations_count_their_own_polls(tmp_path):
    generator = MockVideoGenerator(polls_until_done=2)
    poller = _poller(generator, tmp_path)

    async def scenario():
        return await asyncio.gather(
            poller.generate(SOURCE, "Slow rotation", "9:16"),
            poller.generate(SOURCE, "Sparkle close-up", "16:9"),
        )

    with patch("gemstudio.pipeline.video.logger") as log:
        videos = asyncio.run(scenario())

    assert len({v.file_path for v in videos}) == 2
    assert generator.refreshes == 4
    finished = [c.args[0] for c in log.info.call_args_list if "finished after" in c.args[0]]
    assert len(finished) == 2
    assert all(msg.endswith("finished after 2 poll(s).") for msg in finished)
