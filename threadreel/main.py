"""FastAPI backend for the thread-to-video generator."""
import logging
import os

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from threadreel import __version__, config
from threadreel.job_manager import job_manager
from threadreel.models import (
    BackgroundsResponse,
    GenerateRequest,
    HealthResponse,
    JobStatus,
    JobStatusResponse,
)
from threadreel.pipeline import PipelineOrchestrator, is_valid_thread_url, list_backgrounds

logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title="ThreadReel Video Generator API",
    description="Turn Reddit threads into short vertical videos with gameplay backgrounds",
    version=__version__
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify frontend domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

orchestrator = PipelineOrchestrator(job_manager=job_manager)


@app.post("/api/generate", response_model=JobStatusResponse)
async def generate_video(request: GenerateRequest):
    """
    Start a new video generation job.

    Poll ``/api/jobs/{script_id}`` with the returned id to track progress.
    """
    thread_url = request.thread_url.strip()
    if not is_valid_thread_url(thread_url):
        raise HTTPException(
            status_code=400,
            detail="thread_url must be a Reddit thread URL (https://www.reddit.com/r/<sub>/comments/<id>/...)"
        )

    script_id = await orchestrator.submit(thread_url, request.background)
    return await orchestrator.get_status(script_id)


@app.get("/api/jobs/{script_id}", response_model=JobStatusResponse)
async def get_job_status(script_id: str):
    """
    Get the status of a video generation job.

    Poll this endpoint to track progress.
    """
    status = await orchestrator.get_status(script_id)
    if not status:
        raise HTTPException(status_code=404, detail="Job not found")
    return status


@app.delete("/api/jobs/{script_id}", response_model=JobStatusResponse)
async def cancel_job(script_id: str):
    """Cancel a job. Cancelling a finished job changes nothing."""
    try:
        await orchestrator.cancel(script_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    return await orchestrator.get_status(script_id)


@app.delete("/api/jobs/{script_id}/files")
async def delete_job_files(script_id: str):
    """Remove a finished job's working files and video."""
    try:
        removed_work = await orchestrator.cleanup(script_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    removed_video = await orchestrator.delete_video(script_id)
    return {"script_id": script_id, "work_files_removed": removed_work, "video_removed": removed_video}


@app.get("/api/videos/{script_id}")
async def download_video(script_id: str):
    """
    Download a completed video file.

    Returns MP4 file for download.
    """
    job = await orchestrator.job_manager.get_job(script_id)

    if not job:
        raise HTTPException(status_code=404, detail="Video not found")

    if job.status != JobStatus.COMPLETED or not job.video_path:
        raise HTTPException(
            status_code=400,
            detail=f"Video is not ready. Current stage: {job.status.value}"
        )

    if not os.path.exists(job.video_path):
        raise HTTPException(
            status_code=500,
            detail="Video file not found on server"
        )

    return FileResponse(
        job.video_path,
        media_type="video/mp4",
        filename=f"threadreel_{script_id}.mp4"
    )


@app.get("/api/backgrounds", response_model=BackgroundsResponse)
async def get_backgrounds():
    """Background clip ids that can be requested."""
    return BackgroundsResponse(backgrounds=list_backgrounds(str(config.GAMEPLAY_DIR)))


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="ok")


@app.on_event("startup")
async def startup_event():
    """Run startup tasks."""
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    config.WORK_DIR.mkdir(parents=True, exist_ok=True)

    logger.info("ThreadReel API starting (%s, renderer=%s)", config.ENVIRONMENT, config.RENDERER)
    logger.info("Output directory: %s", config.OUTPUT_DIR)
    logger.info("Gameplay directory: %s", config.GAMEPLAY_DIR)

    # Check for gameplay clips
    if config.GAMEPLAY_DIR.exists():
        logger.info("Found %d gameplay clips", len(list_backgrounds(str(config.GAMEPLAY_DIR))))
    else:
        logger.warning("No gameplay directory found. Create %s and add MP4 files.", config.GAMEPLAY_DIR)


@app.on_event("shutdown")
async def shutdown_event():
    """Run shutdown tasks."""
    removed = await orchestrator.job_manager.cleanup_old_jobs(config.JOB_MAX_AGE_HOURS)
    logger.info("ThreadReel API shutting down (%d stale jobs dropped)", len(removed))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
