import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

IMAGE_ASPECT_RATIOS = ("1:1", "3:4", "4:3", "9:16", "16:9")
VIDEO_ASPECT_RATIOS = ("16:9", "9:16")


class GenerationMode(Enum):
    PHOTO = "photo"
    VIDEO = "video"


class FailureKind(Enum):
    SAFETY_BLOCKED = "safety_blocked"
    NO_IMAGE = "no_image"
    TIMEOUT = "timeout"
    ERROR = "error"


class WatermarkKind(Enum):
    TEXT = "text"
    LOGO = "logo"


class WatermarkPosition(Enum):
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"
    CENTER = "center"


@dataclass(frozen=True)
class SourceAsset:
    data: bytes
    media_type: str
    name: Optional[str] = None


@dataclass(frozen=True)
class Angle:
    label: str
    prompt_suffix: str


@dataclass(frozen=True)
class GenerationRequest:
    source: SourceAsset
    description: str
    aspect_ratio: str = "1:1"
    background: Optional[SourceAsset] = None

    def __post_init__(self):
        if self.aspect_ratio not in IMAGE_ASPECT_RATIOS:
            raise ValueError(f"Unsupported aspect ratio '{self.aspect_ratio}'")


@dataclass(frozen=True)
class AngleSuccess:
    id: str
    image: bytes
    media_type: str
    angle_label: str
    prompt_used: str


@dataclass(frozen=True)
class AngleFailure:
    angle_label: str
    kind: FailureKind
    reason: str


GenerationOutcome = Union[AngleSuccess, AngleFailure]


@dataclass(frozen=True)
class ShowcaseResult:
    """Successful angles in catalog order, plus the failures that were dropped."""
    successes: Tuple[AngleSuccess, ...]
    failures: Tuple[AngleFailure, ...] = ()

    @property
    def requested(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures) and bool(self.successes)

    def __iter__(self) -> Iterator[AngleSuccess]:
        return iter(self.successes)

    def __len__(self) -> int:
        return len(self.successes)

    def __getitem__(self, index: int) -> AngleSuccess:
        return self.successes[index]


@dataclass(frozen=True)
class WatermarkSpec:
    enabled: bool = False
    kind: WatermarkKind = WatermarkKind.TEXT
    position: WatermarkPosition = WatermarkPosition.BOTTOM_RIGHT
    text: Optional[str] = None
    font: Optional[str] = None
    color: Optional[str] = None
    text_size: int = 50
    logo: Optional[bytes] = None
    logo_url: Optional[str] = None

    @property
    def has_payload(self) -> bool:
        if self.kind is WatermarkKind.TEXT:
            return bool(self.text and self.text.strip())
        return bool(self.logo or self.logo_url)

    @property
    def is_active(self) -> bool:
        return self.enabled and self.has_payload

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "WatermarkSpec":
        """Builds a spec from the stored studio config block (camelCase or snake_case keys)."""
        def pick(*keys, default=None):
            for key in keys:
                if config.get(key) is not None:
                    return config[key]
            return default

        try:
            position = WatermarkPosition(pick("textPosition", "position", default="bottom-right"))
        except ValueError:
            position = WatermarkPosition.BOTTOM_RIGHT

        try:
            kind = WatermarkKind(pick("type", "kind", default="text"))
        except ValueError:
            kind = WatermarkKind.TEXT

        try:
            text_size = int(pick("textSize", "text_size", default=50))
        except (TypeError, ValueError):
            text_size = 50

        return cls(
            enabled=bool(pick("enabled", default=False)),
            kind=kind,
            position=position,
            text=pick("text"),
            font=pick("textFont", "font"),
            color=pick("textColor", "color"),
            text_size=text_size,
            logo_url=pick("logoUrl", "logo_url"),
        )


@dataclass(frozen=True)
class CompositedImage:
    data: bytes
    media_type: str
    width: int
    height: int
    applied: bool


@dataclass(frozen=True)
class VideoOperationHandle:
    name: str
    done: bool = False
    asset_uri: Optional[str] = None
    error: Optional[str] = None
    # Backend-native operation object, needed to refresh status
    operation: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class GeneratedVideo:
    id: str
    file_path: str
    prompt: str
    aspect_ratio: str
    media_type: str = "video/mp4"

    def release(self) -> None:
        """Deletes the local playable file. Safe to call twice."""
        if self.file_path and os.path.exists(self.file_path):
            os.remove(self.file_path)


@dataclass(frozen=True)
class ShowcaseImage:
    """One delivered photo: the raw generation plus its watermarked rendition, if any."""
    id: str
    angle_label: str
    prompt: str
    original: bytes
    media_type: str
    watermarked: Optional[CompositedImage] = None

    @property
    def download_bytes(self) -> bytes:
        if self.watermarked is not None and self.watermarked.applied:
            return self.watermarked.data
        return self.original


@dataclass(frozen=True)
class PhotoshootResult:
    images: List[ShowcaseImage]
    failures: List[AngleFailure] = field(default_factory=list)
    credits_remaining: Optional[int] = None


@dataclass(frozen=True)
class UserProfile:
    user_id: str
    can_use_photo: bool = True
    can_use_video: bool = True
    credits: int = 10
    expires_at: Optional[datetime] = None
    role: str = "user"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now > expires

    def can_use(self, mode: GenerationMode) -> bool:
        return self.can_use_photo if mode is GenerationMode.PHOTO else self.can_use_video
