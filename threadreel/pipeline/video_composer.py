"""Video compositing using MoviePy.

Runs as the renderer subprocess:

    python -m threadreel.pipeline.video_composer --props script.json --output out.mp4
"""
import argparse
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from moviepy import AudioFileClip, CompositeAudioClip, CompositeVideoClip, ImageClip, VideoFileClip
from PIL import Image, ImageDraw, ImageFont

from threadreel import config
from threadreel.pipeline.renderer import RenderProps
from threadreel.pipeline.timeline import ClipPlan, CompositionPlan, LoopPlan
from threadreel.script import DialogueLine

logger = logging.getLogger(__name__)

FALLBACK_FONTS = (
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "/Library/Fonts/Arial Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
)
SPEAKER_LABELS = {
    "narrator": "Narrator",
    "op": "OP",
}


def _load_font(fontsize: int) -> ImageFont.ImageFont:
    for path in (config.FONT_PATH,) + FALLBACK_FONTS:
        try:
            return ImageFont.truetype(path, fontsize)
        except OSError:
            continue
    return ImageFont.load_default()


def _wrap_text(text: str, font: ImageFont.ImageFont, max_width: int) -> list[str]:
    """
    Wrap text to fit within max_width pixels.

    Args:
        text: Text to wrap
        font: PIL font object
        max_width: Maximum width in pixels

    Returns:
        List of text lines
    """
    words = text.split()
    lines = []
    current_line = []

    for word in words:
        test_line = ' '.join(current_line + [word])
        bbox = font.getbbox(test_line)
        width = bbox[2] - bbox[0]

        if width <= max_width:
            current_line.append(word)
        else:
            if current_line:
                lines.append(' '.join(current_line))
                current_line = [word]
            else:
                # Single word is too long, add it anyway
                lines.append(word)

    if current_line:
        lines.append(' '.join(current_line))

    return lines


def speaker_label(speaker: str) -> str:
    key = "".join(speaker.lower().split())
    if key in SPEAKER_LABELS:
        return SPEAKER_LABELS[key]
    if key.startswith("commenter"):
        return f"Commenter {key[len('commenter'):]}".strip()
    return speaker


def _render_caption(
    line: DialogueLine,
    resolution: tuple,
    scratch_dir: Optional[str],
    fontsize: int = 60,
    padding: int = 60,
    max_lines: int = 6,
) -> str:
    """
    Draw one line's caption (speaker label over wrapped text) to a PNG.

    Returns:
        Path to the temporary PNG file
    """
    width, height = resolution
    img = Image.new('RGBA', (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    font = _load_font(fontsize)
    label_font = _load_font(int(fontsize * 0.7))

    lines = _wrap_text(line.text, font, width - 2 * padding)
    if len(lines) > max_lines:
        lines = lines[:max_lines]
        lines[-1] = lines[-1].rstrip() + '...'

    line_height = fontsize + 12
    label_height = int(fontsize * 0.7) + 20
    total_height = label_height + len(lines) * line_height
    y_position = int(height * 0.62) - total_height // 2

    label = speaker_label(line.speaker)
    bbox = label_font.getbbox(label)
    draw.text(
        ((width - (bbox[2] - bbox[0])) // 2, y_position),
        label,
        fill='#FFFF00',
        font=label_font,
        stroke_width=4,
        stroke_fill='black'
    )
    y_position += label_height

    # White text with black outline (TikTok style)
    for text_line in lines:
        bbox = font.getbbox(text_line)
        draw.text(
            ((width - (bbox[2] - bbox[0])) // 2, y_position),
            text_line,
            fill='white',
            font=font,
            stroke_width=5,
            stroke_fill='black'
        )
        y_position += line_height

    temp_file = tempfile.NamedTemporaryFile(suffix='.png', delete=False, dir=scratch_dir)
    img.save(temp_file.name, 'PNG')
    temp_file.close()
    return temp_file.name


def _build_background(source: VideoFileClip, plan: CompositionPlan) -> list:
    """Background clips laid out per the plan's clip/loop decision."""
    fps = plan.fps
    background = plan.background
    resolution = (plan.width, plan.height)

    if isinstance(background, ClipPlan):
        end = min(background.end_frame / fps, source.duration)
        clips = [source.subclipped(0, end)]
    elif isinstance(background, LoopPlan):
        clips = [
            source.subclipped(0, min(segment.duration_frames / fps, source.duration))
            .with_start(segment.start_frame / fps)
            for segment in background.segments
        ]
    else:
        raise TypeError(f"Unknown background plan: {background!r}")

    return [clip if tuple(clip.size) == resolution else clip.resized(new_size=resolution) for clip in clips]


def compose_from_props(
    props: RenderProps,
    output_path: str,
    codec: str = "libx264",
    scratch_dir: Optional[str] = None,
) -> str:
    """
    Compose the final video described by ``props``.

    Args:
        props: Script, composition plan and background path.
        output_path: Path to save output video
        codec: Video codec for ffmpeg
        scratch_dir: Directory for temporary caption and audio files

    Returns:
        Path to the generated video file
    """
    plan = props.plan
    resolution = (plan.width, plan.height)
    video_duration = plan.total_frames / plan.fps
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)

    source = VideoFileClip(props.background_path, audio=False)
    audio_clips = []
    temp_files_to_cleanup = []
    final_video = None

    try:
        background_clips = _build_background(source, plan)

        caption_clips = []
        for cue in plan.audio_cues:
            if cue.duration_frames <= 0:
                continue
            line = props.script.lines[cue.line_index]
            start = cue.start_frame / plan.fps
            caption_path = _render_caption(line, resolution, scratch_dir)
            temp_files_to_cleanup.append(caption_path)
            caption = ImageClip(caption_path)
            caption = caption.with_start(start).with_duration(cue.duration_frames / plan.fps).with_position('center')
            caption_clips.append(caption)

            if cue.asset_ref:
                audio_clips.append(AudioFileClip(cue.asset_ref).with_start(start))

        # Layer order: background -> captions
        final_video = CompositeVideoClip(background_clips + caption_clips, size=resolution)
        final_video = final_video.with_duration(video_duration)
        if audio_clips:
            final_video = final_video.with_audio(CompositeAudioClip(audio_clips).with_duration(video_duration))

        final_video.write_videofile(
            output_path,
            fps=plan.fps,
            codec=codec,
            audio_codec='aac',
            preset='ultrafast',
            threads=2,
            temp_audiofile_path=scratch_dir or '',
            logger=None,
        )
    finally:
        # Ensure all clips are closed even on failure
        for clip_obj in [source, final_video] + audio_clips:
            if clip_obj is None:
                continue
            try:
                clip_obj.close()
            except Exception as e:
                logger.debug("Failed to close clip: %s", e)

        for temp_file in temp_files_to_cleanup:
            try:
                if os.path.exists(temp_file):
                    os.unlink(temp_file)
            except OSError:
                pass

    return output_path


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Render a threadreel composition to MP4")
    parser.add_argument("--props", required=True, help="Path to script.json written by the render invoker")
    parser.add_argument("--output", required=True, help="Output MP4 path")
    parser.add_argument("--composition", default="ThreadVideo", help="Composition id (informational)")
    parser.add_argument("--codec", default="libx264")
    parser.add_argument("--scratch", default=None, help="Directory for temporary files")
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    props = RenderProps.model_validate_json(Path(args.props).read_text())
    logger.info(
        "Composing %s for script %s: %d frames at %d fps",
        args.composition, props.script_id, props.plan.total_frames, props.plan.fps,
    )
    compose_from_props(props, args.output, codec=args.codec, scratch_dir=args.scratch)
    logger.info("Wrote %s", args.output)


if __name__ == "__main__":
    main()
