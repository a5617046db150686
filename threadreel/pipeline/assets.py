"""Background gameplay assets."""
import logging
import random
from pathlib import Path
from typing import Optional

from moviepy import VideoFileClip

logger = logging.getLogger(__name__)

DEFAULT_BACKGROUND_SECONDS = 60.0
VIDEO_PATTERNS = ("*.mp4", "*.MP4")


def _clips(gameplay_dir: str) -> list[Path]:
    gameplay_path = Path(gameplay_dir)
    if not gameplay_path.exists():
        return []
    clips = []
    for pattern in VIDEO_PATTERNS:
        clips.extend(gameplay_path.glob(pattern))
    return sorted(clips)


def list_backgrounds(gameplay_dir: str) -> list[str]:
    """Background ids (file stems) available in ``gameplay_dir``."""
    return sorted({clip.stem for clip in _clips(gameplay_dir)})


def get_random_gameplay_clip(gameplay_dir: str) -> Optional[str]:
    """
    Get a random gameplay clip from the assets directory.

    Returns:
        Path to a random gameplay clip, or None if directory is empty
    """
    clips = _clips(gameplay_dir)
    if not clips:
        return None
    return str(random.choice(clips))


def resolve_background(background_id: str, gameplay_dir: str) -> Optional[str]:
    """Path of the clip named ``background_id``, else a random clip."""
    for clip in _clips(gameplay_dir):
        if clip.stem == background_id:
            return str(clip)
    if background_id:
        logger.info("Background '%s' not found, picking a random clip", background_id)
    return get_random_gameplay_clip(gameplay_dir)


def probe_video_duration(video_path: str) -> float:
    """Length of a video in seconds; 60s if it cannot be read."""
    try:
        clip = VideoFileClip(video_path, audio=False)
    except Exception as e:
        logger.warning("Failed to analyze video %s (%s), assuming %.0fs", video_path, e, DEFAULT_BACKGROUND_SECONDS)
        return DEFAULT_BACKGROUND_SECONDS
    try:
        return float(clip.duration or DEFAULT_BACKGROUND_SECONDS)
    finally:
        clip.close()
