"""Frame-accurate composition planning for a timed script.

Everything here is pure: the same script and background duration always give
the same plan, and nothing touches the filesystem.
"""
import math
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from threadreel.script import Script

FPS = 30
WIDTH = 1080
HEIGHT = 1920  # 9:16 vertical
TRAILING_BUFFER_SECONDS = 1.0
DEFAULT_SCRIPT_SECONDS = 30.0


class ClipPlan(BaseModel):
    """Background is long enough: play it once, trimmed at ``end_frame``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["clip"] = "clip"
    end_frame: int = Field(ge=0)


class LoopSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_frame: int = Field(ge=0)
    duration_frames: int = Field(gt=0)


class LoopPlan(BaseModel):
    """Background is too short: repeat it, one segment per pass."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["loop"] = "loop"
    segments: tuple[LoopSegment, ...]

    @property
    def total_frames(self) -> int:
        return sum(segment.duration_frames for segment in self.segments)


BackgroundPlan = Annotated[Union[ClipPlan, LoopPlan], Field(discriminator="kind")]


class AudioCue(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_index: int
    start_frame: int
    duration_frames: int
    asset_ref: Optional[str] = None


class CompositionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    fps: int
    total_frames: int
    width: int
    height: int
    duration_seconds: float
    background: BackgroundPlan
    audio_cues: tuple[AudioCue, ...] = ()


def seconds_to_frames(seconds: float, fps: int = FPS) -> int:
    return math.floor(seconds * fps)


def script_duration_seconds(script: Script, trailing_buffer: float = TRAILING_BUFFER_SECONDS) -> float:
    """Spoken length plus the trailing buffer; the default length if empty."""
    if not script.lines:
        return DEFAULT_SCRIPT_SECONDS
    return script.duration_seconds + trailing_buffer


def plan_background(
    script_seconds: float,
    background_seconds: float,
    fps: int = FPS,
    total_frames: Optional[int] = None,
) -> Union[ClipPlan, LoopPlan]:
    """
    Decide whether the background is trimmed or looped.

    Args:
        script_seconds: Length the video must cover.
        background_seconds: Length of the background asset. A non-positive
            value means the length is unknown; the asset is then clipped.
        fps: Frames per second.
        total_frames: Frame count of the video (``ceil(script_seconds * fps)``
            when omitted).

    Returns:
        ``ClipPlan`` when the asset covers the script, else a ``LoopPlan``
        whose segment lengths add up to ``total_frames``.
    """
    if total_frames is None:
        total_frames = math.ceil(script_seconds * fps)

    if background_seconds <= 0 or background_seconds >= script_seconds:
        return ClipPlan(end_frame=total_frames)

    loops = math.ceil(script_seconds / background_seconds)
    background_frames = max(1, seconds_to_frames(background_seconds, fps))
    segments = []
    for i in range(loops):
        start = i * background_frames
        if start >= total_frames:
            break
        # The last pass takes whatever is left, so the lengths sum to total_frames
        length = total_frames - start if i == loops - 1 else min(background_frames, total_frames - start)
        segments.append(LoopSegment(start_frame=start, duration_frames=length))
    return LoopPlan(segments=tuple(segments))


def build_composition(
    script: Script,
    background_seconds: float,
    fps: int = FPS,
    width: int = WIDTH,
    height: int = HEIGHT,
    trailing_buffer: float = TRAILING_BUFFER_SECONDS,
) -> CompositionPlan:
    """Build the render plan for a timed script over a background asset."""
    duration = script_duration_seconds(script, trailing_buffer)
    total_frames = math.ceil(duration * fps)

    audio_cues = tuple(
        AudioCue(
            line_index=index,
            start_frame=seconds_to_frames(line.start_time, fps),
            duration_frames=seconds_to_frames(line.duration, fps),
            asset_ref=line.audio_ref if line.has_audio else None,
        )
        for index, line in enumerate(script.lines)
    )

    return CompositionPlan(
        fps=fps,
        total_frames=total_frames,
        width=width,
        height=height,
        duration_seconds=duration,
        background=plan_background(duration, background_seconds, fps, total_frames),
        audio_cues=audio_cues,
    )
