"""Pydantic models for the job-status API."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Stage of a video generation job."""
    PENDING = "pending"
    FETCHING = "fetching"
    SCRIPTING = "scripting"
    SYNTHESIZING_AUDIO = "synthesizing_audio"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Forward order of the non-absorbing states
STAGE_ORDER = (
    JobStatus.PENDING,
    JobStatus.FETCHING,
    JobStatus.SCRIPTING,
    JobStatus.SYNTHESIZING_AUDIO,
    JobStatus.RENDERING,
    JobStatus.COMPLETED,
)
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Static progress weights reported when a stage begins
STAGE_PROGRESS = {
    JobStatus.PENDING: 0,
    JobStatus.FETCHING: 5,
    JobStatus.SCRIPTING: 20,
    JobStatus.SYNTHESIZING_AUDIO: 40,
    JobStatus.RENDERING: 70,
    JobStatus.COMPLETED: 100,
}

STAGE_MESSAGES = {
    JobStatus.PENDING: "Waiting to start",
    JobStatus.FETCHING: "Fetching thread",
    JobStatus.SCRIPTING: "Writing script",
    JobStatus.SYNTHESIZING_AUDIO: "Generating voices",
    JobStatus.RENDERING: "Rendering video",
    JobStatus.COMPLETED: "Video ready",
    JobStatus.FAILED: "Video generation failed",
    JobStatus.CANCELLED: "Video generation cancelled",
}


class GenerateRequest(BaseModel):
    """Request model for video generation."""
    thread_url: str = Field(..., description="URL of the Reddit thread to turn into a video")
    background: Optional[str] = Field(None, description="Background clip id (random when omitted)")

    class Config:
        json_schema_extra = {
            "example": {
                "thread_url": "https://www.reddit.com/r/AmItheAsshole/comments/abc123/aita_for_example/",
                "background": "minecraft-parkour"
            }
        }


class JobStatusResponse(BaseModel):
    """Response model for job status."""
    script_id: str
    stage: JobStatus
    progress: int = Field(ge=0, le=100, description="Progress percentage (0-100)")
    message: str = ""
    video_url: Optional[str] = Field(None, description="URL to download the video (when completed)")
    error: Optional[str] = Field(None, description="Error message (if stage is failed)")
    warnings: list[str] = Field(default_factory=list, description="Stages that fell back to degraded output")

    class Config:
        json_schema_extra = {
            "example": {
                "script_id": "script_1718000000000_3f9c2a1b0",
                "stage": "completed",
                "progress": 100,
                "message": "Video ready",
                "video_url": "/api/videos/script_1718000000000_3f9c2a1b0"
            }
        }


class BackgroundsResponse(BaseModel):
    backgrounds: list[str]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
