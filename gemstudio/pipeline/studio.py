import asyncio
import copy
import sqlite3
from typing import Any, Dict, List, Optional

from gemstudio.config.settings import Settings, settings as default_settings
from gemstudio.core.errors import (
    AccessExpired,
    FeatureDisabled,
    InsufficientCredits,
    RenderContextUnavailable,
)
from gemstudio.core.models import (
    AngleSuccess,
    GeneratedVideo,
    GenerationMode,
    GenerationRequest,
    PhotoshootResult,
    ShowcaseImage,
    SourceAsset,
    UserProfile,
    WatermarkSpec,
)
from gemstudio.core.persistence import ProfileStore
from gemstudio.engine.adapters import DEFAULT_CAPTION, caption_prompt
from gemstudio.generators.base import ImageGenerator, TextGenerator, VideoGenerator
from gemstudio.imaging import prep
from gemstudio.imaging.compositor import watermark
from gemstudio.pipeline.showcase import ShowcaseOrchestrator
from gemstudio.pipeline.video import VideoOperationPoller
from gemstudio.utils.logger import get_logger

logger = get_logger("studio")

DEFAULT_STUDIO_CONFIG: Dict[str, Any] = {
    "branding": {
        "storeName": "Gemini Jewelry Studio",
    },
    "features": {
        "enablePhoto": True,
        "enableVideo": True,
        "showExamples": True,
    },
    "watermark": {
        "enabled": True,
        "type": "text",
        "text": "My Jewelry Store",
        "textSize": 50,
        "textPosition": "bottom-right",
        "textColor": "#ffffff",
        "textFont": '"Playfair Display", serif',
    },
    "examples": [
        {
            "label": "Diamond Ring",
            "url": "https://images.unsplash.com/photo-1605100804763-247f67b3557e?auto=format&fit=crop&w=600&q=80",
        },
        {
            "label": "Gold Necklace",
            "url": "https://images.unsplash.com/photo-1599643478518-17488fbbcd75?auto=format&fit=crop&w=600&q=80",
        },
        {
            "label": "Luxury Watch",
            "url": "https://images.unsplash.com/photo-1524592094714-0f0654e20314?auto=format&fit=crop&w=600&q=80",
        },
    ],
}

OUT_OF_CREDITS_MESSAGE = "You have run out of credits. Please contact support to purchase more."
EXPIRED_MESSAGE = "Your access to the Jewelry Studio has expired. Please contact support to renew your subscription."


class StudioConfig:
    """
    Store-wide settings edited by admins. Sections are merged key-wise over
    the defaults, so a stored config only needs the keys it changes.
    """

    SECTIONS = ("branding", "features", "watermark")

    def __init__(self, stored: Optional[Dict[str, Any]] = None):
        self.data = self.merge(stored or {})

    @classmethod
    def merge(cls, stored: Dict[str, Any]) -> Dict[str, Any]:
        merged = copy.deepcopy(DEFAULT_STUDIO_CONFIG)
        for section in cls.SECTIONS:
            if isinstance(stored.get(section), dict):
                merged[section].update(stored[section])
        if isinstance(stored.get("examples"), list):
            merged["examples"] = stored["examples"]
        return merged

    @property
    def store_name(self) -> str:
        return self.data["branding"].get("storeName") or DEFAULT_STUDIO_CONFIG["branding"]["storeName"]

    def feature_enabled(self, mode: GenerationMode) -> bool:
        key = "enablePhoto" if mode is GenerationMode.PHOTO else "enableVideo"
        return bool(self.data["features"].get(key, True))

    @property
    def watermark(self) -> WatermarkSpec:
        return WatermarkSpec.from_config(self.data["watermark"])

    @property
    def examples(self) -> List[Dict[str, str]]:
        return [e for e in self.data["examples"] if isinstance(e, dict) and e.get("url")]

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)


class JewelryStudio:
    """
    The studio front door: checks the user's access, runs a photoshoot or a
    video animation, watermarks the photos and charges one credit on success.
    """

    def __init__(
        self,
        store: ProfileStore,
        image_generator: ImageGenerator,
        video_generator: VideoGenerator,
        text_generator: TextGenerator,
        config: Settings = default_settings,
    ):
        self.config = config
        self.store = store
        self.text_generator = text_generator
        self.orchestrator = ShowcaseOrchestrator(image_generator, config=config)
        self.poller = VideoOperationPoller(video_generator, config=config)

    def load_config(self) -> StudioConfig:
        return StudioConfig(self.store.read_config())

    def save_config(self, stored: Dict[str, Any]) -> StudioConfig:
        studio_config = StudioConfig(stored)
        self.store.write_config(studio_config.to_dict())
        logger.info(f"💾 Studio config saved for '{studio_config.store_name}'")
        return studio_config

    def check_access(self, user_id: str, mode: GenerationMode) -> UserProfile:
        """
        Raises:
            AccessExpired: the profile's access window has closed.
            FeatureDisabled: the mode is switched off for the store or the user.
            InsufficientCredits: no credits left.
        """
        profile = self.store.get_profile(user_id)

        if profile.is_expired():
            raise AccessExpired(EXPIRED_MESSAGE)
        if not self.load_config().feature_enabled(mode):
            raise FeatureDisabled(f"{mode.value.capitalize()} mode is disabled for this store.")
        if not profile.can_use(mode):
            raise FeatureDisabled(f"Your plan does not include {mode.value} generation.")
        if profile.credits <= 0:
            raise InsufficientCredits(OUT_OF_CREDITS_MESSAGE)
        return profile

    def _reserve(self, user_id: str) -> int:
        """Takes one credit up front. Concurrent requests cannot spend the same credit."""
        remaining = self.store.reserve_credit(user_id)
        if remaining is None:
            raise InsufficientCredits(OUT_OF_CREDITS_MESSAGE)
        logger.info(f"💳 Credit reserved for {user_id} ({remaining} left)")
        return remaining

    def _refund(self, user_id: str):
        try:
            self.store.refund_credit(user_id)
        except sqlite3.Error as e:
            logger.error(f"❌ Failed to refund credit for {user_id}: {e}")
            return
        logger.info(f"↩️ Credit refunded for {user_id}")

    async def _finish_image(self, success: AngleSuccess, spec: WatermarkSpec) -> ShowcaseImage:
        marked = None
        try:
            marked = await watermark(success.image, spec)
        except RenderContextUnavailable as e:
            logger.warning(f"⚠️ Watermark skipped for {success.angle_label}: {e}")

        return ShowcaseImage(
            id=success.id,
            angle_label=success.angle_label,
            prompt=success.prompt_used,
            original=success.image,
            media_type=success.media_type,
            watermarked=marked,
        )

    async def photoshoot(self, user_id: str, request: GenerationRequest) -> PhotoshootResult:
        """
        Generates every angle, watermarks each image and charges one credit.

        Raises:
            AccessDenied: see check_access.
            GenerationFailed: every angle failed; no credit is charged.
        """
        self.check_access(user_id, GenerationMode.PHOTO)
        spec = self.load_config().watermark
        credits_remaining = self._reserve(user_id)

        try:
            result = await self.orchestrator.generate(request)
            images = await asyncio.gather(*(self._finish_image(s, spec) for s in result))
        except (Exception, asyncio.CancelledError):
            self._refund(user_id)
            raise

        if result.is_partial:
            logger.warning(f"⚠️ Partial photoshoot for {user_id}: {len(result)}/{result.requested} shots")
        return PhotoshootResult(images=list(images), failures=list(result.failures), credits_remaining=credits_remaining)

    async def animate(
        self,
        user_id: str,
        source: SourceAsset,
        prompt: str = "",
        aspect_ratio: str = "9:16",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GeneratedVideo:
        """Runs one video operation to completion and charges one credit."""
        self.check_access(user_id, GenerationMode.VIDEO)
        self._reserve(user_id)

        try:
            return await self.poller.generate(source, prompt, aspect_ratio, cancel_event)
        except (Exception, asyncio.CancelledError):
            self._refund(user_id)
            raise

    async def caption(self, description: str, store_name: Optional[str] = None, language: str = "Hebrew") -> str:
        store_name = store_name or self.load_config().store_name
        text = await self.text_generator.generate_text_async(caption_prompt(description, store_name, language))
        return text.strip() if text and text.strip() else DEFAULT_CAPTION

    async def load_example(self, label: str) -> SourceAsset:
        """Fetches one of the configured example products by its label."""
        for example in self.load_config().examples:
            if example.get("label") == label:
                name = f"{label.replace(' ', '_')}.jpg"
                return await prep.fetch_as_file_async(example["url"], name, timeout=self.config.fetch_timeout)
        raise KeyError(f"No example named '{label}'")
