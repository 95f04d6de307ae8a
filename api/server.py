import asyncio
import mimetypes
import os
import uuid
from typing import Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, File, UploadFile, Form, Depends, Request
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware

from api.schemas import (
    CaptionRequest,
    CaptionResponse,
    FailureResponse,
    ImageResponse,
    JobResponse,
    JobStatus,
    JobSubmissionResponse,
    PhotoshootResponse,
    ProfileResponse,
    StudioConfigPayload,
    VideoResponse,
)
from api.security import current_user, verify_api_key
from gemstudio.config.settings import settings
from gemstudio.core.errors import (
    AccessDenied,
    EncodingError,
    FetchError,
    InsufficientCredits,
    VideoCancelled,
)
from gemstudio.core.models import (
    IMAGE_ASPECT_RATIOS,
    VIDEO_ASPECT_RATIOS,
    GenerationMode,
    GenerationRequest,
    ShowcaseImage,
    SourceAsset,
)
from gemstudio.core.persistence import SQLiteJobStore, SQLiteProfileStore
from gemstudio.generators.factory import build_backends
from gemstudio.imaging import prep
from gemstudio.pipeline.studio import JewelryStudio
from gemstudio.utils.logger import setup_logging

logger = setup_logging(settings.log_level)

# Use SQLite persistence
db = SQLiteJobStore(settings.jobs_db_path)
profiles = SQLiteProfileStore(settings.profile_db_path, default_credits=settings.default_credits)

# Single studio instance
backends = build_backends(settings)
studio = JewelryStudio(profiles, backends.image, backends.video, backends.text, config=settings)

OUTPUT_ROOT = settings.output_root
os.makedirs(OUTPUT_ROOT, exist_ok=True)

# Cancellation signals for running video jobs
video_cancels: Dict[str, asyncio.Event] = {}

app = FastAPI(
    title="Gem Studio API",
    description="AI jewelry photoshoots, product animations and social captions",
    version="1.0.0",
)


# Global Error Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "detail": str(exc)},
    )


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/artifacts", StaticFiles(directory=OUTPUT_ROOT), name="artifacts")


def _artifact_url(path: str) -> str:
    rel_path = os.path.relpath(path, OUTPUT_ROOT).replace("\\", "/")
    return f"/artifacts/{rel_path}"


def _raise_access_error(e: AccessDenied):
    code = 402 if isinstance(e, InsufficientCredits) else 403
    raise HTTPException(status_code=code, detail=str(e))


def _gate(user_id: str, mode: GenerationMode):
    try:
        studio.check_access(user_id, mode)
    except AccessDenied as e:
        _raise_access_error(e)


async def _read_image(upload: UploadFile) -> SourceAsset:
    media_type = upload.content_type or prep.guess_media_type(upload.filename or "")
    if not media_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Please upload a valid image file.")
    try:
        return prep.read_upload(await upload.read(), media_type=media_type, name=upload.filename)
    except EncodingError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _save_image(job_dir: str, image: ShowcaseImage) -> ImageResponse:
    """Writes the original and the downloadable rendition of one shot."""
    os.makedirs(job_dir, exist_ok=True)

    extension = mimetypes.guess_extension(image.media_type) or ".png"
    original_path = os.path.join(job_dir, f"{image.id}_original{extension}")
    with open(original_path, "wb") as f:
        f.write(image.original)

    watermarked = image.watermarked is not None and image.watermarked.applied
    download_path = original_path
    if watermarked:
        download_path = os.path.join(job_dir, f"{image.id}.png")
        with open(download_path, "wb") as f:
            f.write(image.download_bytes)

    return ImageResponse(
        image_id=image.id,
        angle_label=image.angle_label,
        url=_artifact_url(download_path),
        original_url=_artifact_url(original_path),
        watermarked=watermarked,
    )


async def _run_photoshoot_task(job_id: str, user_id: str, request: GenerationRequest):
    """
    Background task wrapper to run the photoshoot and update job status.
    """
    logger.info(f"▶️ Starting photoshoot job: {job_id}")
    db.update_job(job_id, {"status": JobStatus.PROCESSING.value})

    try:
        result = await studio.photoshoot(user_id, request)

        job_dir = os.path.join(OUTPUT_ROOT, "photoshoots", job_id)
        images = [_save_image(job_dir, image) for image in result.images]
        failures = [
            FailureResponse(angle_label=f.angle_label, kind=f.kind.value, reason=f.reason)
            for f in result.failures
        ]

        response = PhotoshootResponse(
            total_returned=len(images),
            total_requested=len(images) + len(failures),
            images=images,
            failures=failures,
            credits_remaining=result.credits_remaining,
        )
        db.update_job(job_id, {"status": JobStatus.COMPLETED.value, "result": response.model_dump()})
        logger.info(f"✅ Job {job_id} completed.")

    except Exception as e:
        logger.error(f"❌ Job {job_id} failed: {e}", exc_info=True)
        db.update_job(job_id, {"status": JobStatus.FAILED.value, "error": str(e)})


async def _run_video_task(job_id: str, user_id: str, source: SourceAsset, prompt: str, aspect_ratio: str):
    """
    Background task for video animation. Honors POST /jobs/{id}/cancel.
    """
    logger.info(f"🎬 Starting video job: {job_id}")
    db.update_job(job_id, {"status": JobStatus.PROCESSING.value})
    cancel_event = video_cancels.setdefault(job_id, asyncio.Event())

    try:
        video = await studio.animate(user_id, source, prompt, aspect_ratio, cancel_event=cancel_event)
        response = VideoResponse(
            video_id=video.id,
            url=_artifact_url(video.file_path),
            prompt=video.prompt,
            aspect_ratio=video.aspect_ratio,
        )
        db.update_job(job_id, {"status": JobStatus.COMPLETED.value, "result": response.model_dump()})
        logger.info(f"✅ Video job {job_id} completed.")

    except VideoCancelled as e:
        logger.info(f"🛑 Video job {job_id} cancelled.")
        db.update_job(job_id, {"status": JobStatus.CANCELLED.value, "error": str(e)})

    except Exception as e:
        logger.error(f"❌ Video job {job_id} failed: {e}", exc_info=True)
        db.update_job(job_id, {"status": JobStatus.FAILED.value, "error": str(e)})

    finally:
        video_cancels.pop(job_id, None)


def _create_job(kind: str) -> str:
    job_id = str(uuid.uuid4())
    db.create_job(job_id, {"kind": kind, "status": JobStatus.PENDING.value, "result": None, "error": None})
    return job_id


@app.post("/photoshoots", response_model=JobSubmissionResponse, dependencies=[Depends(verify_api_key)])
async def submit_photoshoot(
    background_tasks: BackgroundTasks,
    image: UploadFile = File(...),
    description: str = Form(""),
    aspect_ratio: str = Form("1:1"),
    background: Optional[UploadFile] = File(None),
    user_id: str = Depends(current_user),
):
    """
    Submit a photoshoot (one image per angle). Returns immediately with a Job ID.
    """
    if aspect_ratio not in IMAGE_ASPECT_RATIOS:
        raise HTTPException(status_code=400, detail=f"aspect_ratio must be one of {', '.join(IMAGE_ASPECT_RATIOS)}")
    _gate(user_id, GenerationMode.PHOTO)

    source = await _read_image(image)
    bg = await _read_image(background) if background is not None and background.filename else None
    request = GenerationRequest(source=source, description=description, aspect_ratio=aspect_ratio, background=bg)

    job_id = _create_job("photoshoot")
    background_tasks.add_task(_run_photoshoot_task, job_id, user_id, request)

    return JobSubmissionResponse(job_id=job_id, status=JobStatus.PENDING)


@app.post("/videos", response_model=JobSubmissionResponse, dependencies=[Depends(verify_api_key)])
async def submit_video(
    background_tasks: BackgroundTasks,
    image: UploadFile = File(...),
    prompt: str = Form(""),
    aspect_ratio: str = Form("9:16"),
    user_id: str = Depends(current_user),
):
    """
    Submit a product animation. Returns immediately with a Job ID.
    """
    if aspect_ratio not in VIDEO_ASPECT_RATIOS:
        raise HTTPException(status_code=400, detail=f"aspect_ratio must be one of {', '.join(VIDEO_ASPECT_RATIOS)}")
    _gate(user_id, GenerationMode.VIDEO)

    source = await _read_image(image)

    job_id = _create_job("video")
    video_cancels[job_id] = asyncio.Event()
    background_tasks.add_task(_run_video_task, job_id, user_id, source, prompt, aspect_ratio)

    return JobSubmissionResponse(job_id=job_id, status=JobStatus.PENDING)


@app.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str):
    """
    Poll the status of a specific job. Public endpoint (read-only).
    """
    job = db.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobResponse(
        job_id=job["job_id"],
        kind=job["kind"],
        status=job["status"],
        result=job["result"],
        error=job["error"],
    )


@app.post("/jobs/{job_id}/cancel", response_model=JobSubmissionResponse, dependencies=[Depends(verify_api_key)])
async def cancel_job(job_id: str):
    job = db.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    event = video_cancels.get(job_id)
    if event is None:
        raise HTTPException(status_code=409, detail=f"Job is {job['status']} and cannot be cancelled")

    event.set()
    return JobSubmissionResponse(job_id=job_id, status=JobStatus(job["status"]))


@app.post("/captions", response_model=CaptionResponse, dependencies=[Depends(verify_api_key)])
async def create_caption(request: CaptionRequest):
    caption = await studio.caption(request.description, request.store_name, request.language)
    return CaptionResponse(caption=caption)


@app.get("/config")
def get_config():
    return studio.load_config().to_dict()


@app.put("/config", dependencies=[Depends(verify_api_key)])
def update_config(payload: StudioConfigPayload):
    return studio.save_config(payload.model_dump(exclude_none=True)).to_dict()


@app.get("/examples/{label}")
async def get_example(label: str):
    """
    Fetch one of the configured example products.
    """
    try:
        asset = await studio.load_example(label)
    except KeyError:
        raise HTTPException(status_code=404, detail="Example not found")
    except FetchError as e:
        raise HTTPException(status_code=502, detail="Failed to load example image.") from e

    return Response(content=asset.data, media_type=asset.media_type)


@app.get("/profile", response_model=ProfileResponse)
def get_profile(user_id: str = Depends(current_user)):
    profile = profiles.get_profile(user_id)
    return ProfileResponse(
        user_id=profile.user_id,
        role=profile.role,
        credits=profile.credits,
        can_use_photo=profile.can_use_photo,
        can_use_video=profile.can_use_video,
        expires_at=profile.expires_at.isoformat() if profile.expires_at else None,
        expired=profile.is_expired(),
    )


@app.get("/api/health")
def health_check():
    # Count via DB
    active_count = db.list_active_jobs()
    return {
        "status": "Gem Studio API is running",
        "jobs_active": active_count,
        "backends": "mock" if settings.mock_mode else "gemini",
    }
