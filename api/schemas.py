from enum import Enum
from typing import List, Optional, Any, Dict
from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ImageResponse(BaseModel):
    image_id: str
    angle_label: str
    url: str
    original_url: str
    watermarked: bool


class FailureResponse(BaseModel):
    angle_label: str
    kind: str
    reason: str


class PhotoshootResponse(BaseModel):
    total_returned: int
    total_requested: int
    images: List[ImageResponse]
    failures: List[FailureResponse] = []
    credits_remaining: Optional[int] = None


class VideoResponse(BaseModel):
    video_id: str
    url: str
    prompt: str
    aspect_ratio: str


class JobSubmissionResponse(BaseModel):
    job_id: str
    status: JobStatus


class JobResponse(BaseModel):
    job_id: str
    kind: str
    status: JobStatus
    result: Optional[Any] = None
    error: Optional[str] = None


class CaptionRequest(BaseModel):
    description: str = Field(..., min_length=1)
    store_name: Optional[str] = None
    language: str = "Hebrew"


class CaptionResponse(BaseModel):
    caption: str


class ProfileResponse(BaseModel):
    user_id: str
    role: str
    credits: int
    can_use_photo: bool
    can_use_video: bool
    expires_at: Optional[str] = None
    expired: bool


class StudioConfigPayload(BaseModel):
    branding: Dict[str, Any] = {}
    features: Dict[str, Any] = {}
    watermark: Dict[str, Any] = {}
    examples: Optional[List[Dict[str, str]]] = None
