import asyncio
import os
import uuid
from typing import Optional

from gemstudio.config.settings import Settings, settings as default_settings
from gemstudio.core.errors import FetchError, MissingAsset, PollFailed, SubmissionFailed, VideoCancelled
from gemstudio.core.models import VIDEO_ASPECT_RATIOS, GeneratedVideo, SourceAsset, VideoOperationHandle
from gemstudio.engine.adapters import video_prompt
from gemstudio.generators.base import VideoGenerator
from gemstudio.utils.logger import get_logger

logger = get_logger("video")


class VideoOperationPoller:
    """
    Drives one long-running video operation: submit, poll every
    `poll_interval` seconds until done, then download a local playable file.

    States are Pending (handle.done is False) and Done. The handle is only
    ever replaced by the result of a poll.
    """

    def __init__(
        self,
        generator: VideoGenerator,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
        max_poll_failures: Optional[int] = None,
        output_root: Optional[str] = None,
        config: Settings = default_settings,
    ):
        self.generator = generator
        self.poll_interval = poll_interval if poll_interval is not None else config.poll_interval
        self.poll_timeout = poll_timeout if poll_timeout is not None else config.poll_timeout
        self.max_poll_failures = max(1, max_poll_failures if max_poll_failures is not None else config.max_poll_failures)
        self.output_dir = os.path.join(output_root or config.output_root, "videos")

    async def submit(self, source: SourceAsset, prompt: str, aspect_ratio: str = "9:16") -> VideoOperationHandle:
        if aspect_ratio not in VIDEO_ASPECT_RATIOS:
            raise ValueError(f"Unsupported video aspect ratio '{aspect_ratio}'")

        effective_prompt = video_prompt(prompt)
        logger.info(f"🎬 Submitting video job (Prompt: {effective_prompt[:30]}...)")
        try:
            handle = await self.generator.submit_async(effective_prompt, source, aspect_ratio)
        except Exception as e:
            raise SubmissionFailed(f"Video generation request was rejected: {e}") from e

        logger.info(f"⏳ Operation {handle.name} submitted. Polling for results...")
        return handle

    async def poll(self, handle: VideoOperationHandle) -> VideoOperationHandle:
        """One status refresh, bounded by poll_timeout."""
        try:
            return await asyncio.wait_for(self.generator.refresh_async(handle), timeout=self.poll_timeout)
        except asyncio.TimeoutError as e:
            raise PollFailed(f"Polling {handle.name} timed out after {self.poll_timeout:g}s") from e
        except Exception as e:
            raise PollFailed(f"Polling {handle.name} failed: {e}") from e

    async def _pause(self, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleeps one poll interval, waking early if cancellation is signalled."""
        if cancel_event is None:
            await asyncio.sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            return
        raise VideoCancelled("Video generation was cancelled.")

    async def wait(self, handle: VideoOperationHandle, cancel_event: Optional[asyncio.Event] = None) -> VideoOperationHandle:
        """
        Polls until the operation is done.

        A failed poll is retried on the next tick; `max_poll_failures`
        consecutive failures raise PollFailed.

        Raises:
            PollFailed: polling kept failing.
            VideoCancelled: cancel_event was set; no further polls are issued.
        """
        polls = 0
        consecutive_failures = 0
        while not handle.done:
            if cancel_event is not None and cancel_event.is_set():
                raise VideoCancelled("Video generation was cancelled.")

            await self._pause(cancel_event)

            polls += 1
            try:
                refreshed = await self.poll(handle)
            except PollFailed as e:
                consecutive_failures += 1
                logger.warning(f"⚠️ [Poll {consecutive_failures}/{self.max_poll_failures}] {e}")
                if consecutive_failures >= self.max_poll_failures:
                    raise
                continue

            consecutive_failures = 0
            handle = refreshed

        logger.info(f"✅ Operation {handle.name} finished after {polls} poll(s).")
        return handle

    async def resolve(self, handle: VideoOperationHandle, prompt: str, aspect_ratio: str) -> GeneratedVideo:
        """
        Downloads the finished asset into a local playable file.

        Raises:
            MissingAsset: the finished operation has no download link.
            FetchError: the asset could not be downloaded.
        """
        if not handle.asset_uri:
            detail = f" ({handle.error})" if handle.error else ""
            raise MissingAsset(f"Video generation failed to return a download link.{detail}")

        try:
            data = await self.generator.download_async(handle.asset_uri)
        except FetchError:
            raise
        except (ConnectionError, TimeoutError) as e:
            raise FetchError(f"Could not download video: {e}", url=handle.asset_uri) from e

        video_id = str(uuid.uuid4())
        os.makedirs(self.output_dir, exist_ok=True)
        file_path = os.path.join(self.output_dir, f"{video_id}.mp4")
        with open(file_path, "wb") as f:
            f.write(data)

        return GeneratedVideo(id=video_id, file_path=file_path, prompt=prompt, aspect_ratio=aspect_ratio)

    async def generate(
        self,
        source: SourceAsset,
        prompt: str,
        aspect_ratio: str = "9:16",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GeneratedVideo:
        """Submit, wait and resolve. Local files are released if the caller cancels."""
        handle = await self.submit(source, prompt, aspect_ratio)
        video: Optional[GeneratedVideo] = None
        try:
            handle = await self.wait(handle, cancel_event)
            video = await self.resolve(handle, video_prompt(prompt), aspect_ratio)
            if cancel_event is not None and cancel_event.is_set():
                raise VideoCancelled("Video generation was cancelled.")
            return video
        except (VideoCancelled, asyncio.CancelledError):
            logger.warning(f"🛑 Video operation {handle.name} cancelled, releasing local resources.")
            if video is not None:
                video.release()
            raise
