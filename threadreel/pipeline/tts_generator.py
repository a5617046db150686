"""Per-line speech synthesis and timeline assignment.

Lines are synthesized one at a time, in script order. Each request waits for
the previous one so we stay inside the voice service's rate limits; the
running start time is only ever advanced in line order.
"""
import asyncio
import logging
from io import BytesIO
from itertools import accumulate
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

import aiofiles
import edge_tts
import httpx
from gtts import gTTS
from moviepy import AudioFileClip

from threadreel import config
from threadreel.errors import VoiceServiceUnavailable, VoiceSynthesisError
from threadreel.pipeline.result import StageResult
from threadreel.script import DialogueLine, Script, placeholder_audio_ref

logger = logging.getLogger(__name__)

LINE_PAUSE_SECONDS = 0.5
WORDS_PER_SECOND = 2.5  # ~150 words per minute
MIN_LINE_SECONDS = 1.0
MAX_LINE_SECONDS = 10.0
MAX_TTS_CHARACTERS = 1000

# edge-tts voices per speaker role
EDGE_VOICE_MAP = {
    "narrator": "en-US-ChristopherNeural",
    "op": "en-US-JennyNeural",
    "commenter1": "en-US-AriaNeural",
    "commenter2": "en-US-GuyNeural",
    "male": "en-US-GuyNeural",
    "female": "en-US-AriaNeural",
}

# ElevenLabs built-in voices per speaker role
ELEVENLABS_VOICE_MAP = {
    "narrator": "pNInz6obpgDQGcFmaJgB",  # Adam
    "op": "EXAVITQu4vr4xnSDxMaL",  # Sarah
    "commenter1": "21m00Tcm4TlvDq8ikWAM",  # Rachel
    "commenter2": "VR6AewLTigWG4xSOukaG",  # Josh
    "male": "VR6AewLTigWG4xSOukaG",
    "female": "21m00Tcm4TlvDq8ikWAM",
}


class VoiceClient(Protocol):
    voice_map: dict[str, str]

    async def check_available(self) -> None: ...

    def default_voice_settings(self) -> dict: ...

    async def synthesize(self, text: str, voice_id: str, voice_settings: Optional[dict] = None) -> bytes: ...


class EdgeVoiceClient:
    """Microsoft Edge TTS with gTTS fallback."""

    voice_map = EDGE_VOICE_MAP

    async def check_available(self) -> None:
        try:
            await edge_tts.list_voices()
        except Exception as e:
            raise VoiceServiceUnavailable(f"edge-tts is unreachable: {e}") from e

    def default_voice_settings(self) -> dict:
        return {"rate": "+0%", "pitch": "+0Hz", "volume": "+0%"}

    async def synthesize(self, text: str, voice_id: str, voice_settings: Optional[dict] = None) -> bytes:
        """
        Synthesize ``text`` to MP3 bytes.

        Falls back to gTTS if edge-tts fails.

        Raises:
            VoiceSynthesisError: If both engines fail.
        """
        settings = {**self.default_voice_settings(), **(voice_settings or {})}
        try:
            communicate = edge_tts.Communicate(text, voice_id, **settings)
            audio_chunks = []
            async for chunk in communicate.stream():
                if chunk["type"] == "audio":
                    audio_chunks.append(chunk["data"])
            if not audio_chunks:
                raise VoiceSynthesisError("edge-tts returned no audio")
            return b"".join(audio_chunks)
        except Exception as e:
            logger.warning("edge-tts failed (%s), falling back to gTTS", e)

        try:
            return await asyncio.to_thread(_gtts_bytes, text)
        except Exception as e:
            raise VoiceSynthesisError(f"gTTS fallback failed: {e}") from e


def _gtts_bytes(text: str) -> bytes:
    buffer = BytesIO()
    gTTS(text=text, lang="en").write_to_fp(buffer)
    return buffer.getvalue()


class ElevenLabsVoiceClient:
    """ElevenLabs text-to-speech over HTTP."""

    voice_map = ELEVENLABS_VOICE_MAP
    base_url = "https://api.elevenlabs.io/v1"

    def __init__(self, api_key: str = config.ELEVENLABS_API_KEY, model: str = config.ELEVENLABS_MODEL, timeout: float = 60.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def _headers(self, accept: str) -> dict:
        return {"Accept": accept, "Content-Type": "application/json", "xi-api-key": self.api_key}

    async def check_available(self) -> None:
        if not self.api_key:
            raise VoiceServiceUnavailable("No ElevenLabs API key configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{self.base_url}/user", headers=self._headers("application/json"))
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise VoiceServiceUnavailable(f"ElevenLabs is unavailable: {e}") from e

        subscription = response.json().get("subscription", {})
        used = subscription.get("character_count", 0)
        limit = subscription.get("character_limit", 10000)
        logger.info("ElevenLabs usage: %s/%s characters", used, limit)
        if used >= limit:
            raise VoiceServiceUnavailable("ElevenLabs character limit reached")

    def default_voice_settings(self) -> dict:
        return {"stability": 0.5, "similarity_boost": 0.75, "style": 0.0, "use_speaker_boost": True}

    async def synthesize(self, text: str, voice_id: str, voice_settings: Optional[dict] = None) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/text-to-speech/{voice_id}",
                    headers=self._headers("audio/mpeg"),
                    json={
                        "text": text,
                        "model_id": self.model,
                        "voice_settings": voice_settings or self.default_voice_settings(),
                    },
                )
        except httpx.HTTPError as e:
            raise VoiceSynthesisError(f"ElevenLabs request failed: {e}") from e

        if response.status_code in (401, 403):
            raise VoiceServiceUnavailable("ElevenLabs rejected the API key")
        if response.status_code == 429:
            raise VoiceSynthesisError("ElevenLabs rate limit exceeded")
        if response.status_code >= 400:
            raise VoiceSynthesisError(f"ElevenLabs returned HTTP {response.status_code}")
        return response.content


def default_voice_client() -> VoiceClient:
    if config.VOICE_PROVIDER == "elevenlabs":
        return ElevenLabsVoiceClient()
    return EdgeVoiceClient()


def voice_for_speaker(speaker: str, voice_map: dict[str, str] = EDGE_VOICE_MAP) -> str:
    """Look up a speaker's voice, ignoring case and whitespace.

    Unknown speakers get the narrator voice.
    """
    key = "".join(speaker.lower().split())
    return voice_map.get(key, voice_map["narrator"])


def estimate_duration(text: str) -> float:
    """Estimated speaking time at ~150 wpm, clamped to [1s, 10s]."""
    words = len(text.split())
    return max(MIN_LINE_SECONDS, min(MAX_LINE_SECONDS, words / WORDS_PER_SECOND))


def truncate_for_tts(text: str, limit: int = MAX_TTS_CHARACTERS) -> str:
    if len(text) <= limit:
        return text
    logger.warning("Line is %d characters, truncating to %d for synthesis", len(text), limit)
    return text[: limit - 3] + "..."


def assign_timings(
    lines: Sequence[DialogueLine],
    durations: Sequence[float],
    pause: float = LINE_PAUSE_SECONDS,
) -> tuple[DialogueLine, ...]:
    """Lay lines end to end with a fixed pause, returning new line values.

    ``line[i].start_time`` is the sum of every earlier duration plus one
    pause per earlier line.
    """
    if len(lines) != len(durations):
        raise ValueError("Need exactly one duration per line")
    starts = accumulate((duration + pause for duration in durations[:-1]), initial=0.0)
    return tuple(
        line.model_copy(update={"start_time": start, "duration": duration})
        for line, start, duration in zip(lines, starts, durations)
    )


def placeholder_timeline(script: Script, pause: float = LINE_PAUSE_SECONDS) -> Script:
    """Fully estimated timeline with placeholder audio for every line."""
    lines = [
        line.model_copy(update={"audio_ref": placeholder_audio_ref(script.id, index)})
        for index, line in enumerate(script.lines)
    ]
    durations = [estimate_duration(line.text) for line in script.lines]
    return script.with_lines(assign_timings(lines, durations, pause))


def measure_audio_duration(audio_path: str) -> Optional[float]:
    """Measured length of an audio file in seconds, or None if unreadable."""
    try:
        audio = AudioFileClip(audio_path)
    except Exception as e:
        logger.warning("Could not read audio %s: %s", audio_path, e)
        return None
    try:
        return audio.duration or None
    finally:
        audio.close()


async def _synthesize_line(
    line: DialogueLine,
    index: int,
    audio_dir: Path,
    voice_client: VoiceClient,
    measure_duration: Callable[[str], Optional[float]],
) -> tuple[str, float]:
    voice_id = voice_for_speaker(line.speaker, voice_client.voice_map)
    text = truncate_for_tts(line.text)
    try:
        audio_bytes = await voice_client.synthesize(text, voice_id, voice_client.default_voice_settings())
    except VoiceSynthesisError as e:
        e.line_index = index
        raise
    except Exception as e:
        raise VoiceSynthesisError(f"Voice synthesis failed: {e}", line_index=index) from e

    audio_path = audio_dir / f"line_{index}.mp3"
    async with aiofiles.open(audio_path, "wb") as f:
        await f.write(audio_bytes)

    duration = await asyncio.to_thread(measure_duration, str(audio_path))
    if not duration:
        duration = estimate_duration(line.text)
    return str(audio_path), duration


async def synthesize_audio(
    script: Script,
    audio_dir: Path,
    voice_client: Optional[VoiceClient] = None,
    measure_duration: Callable[[str], Optional[float]] = measure_audio_duration,
    pause: float = LINE_PAUSE_SECONDS,
) -> StageResult[Script]:
    """
    Synthesize speech for every line and assign start times and durations.

    A line whose synthesis fails gets a placeholder audio ref and an estimated
    duration. If the voice service is down or rejects us, every line gets
    the estimated treatment. Either way a fully timed script is returned.

    Args:
        script: Script from the synthesizer (no audio, no timing).
        audio_dir: Directory for ``line_<i>.mp3`` files.
        voice_client: Voice service (defaults per ``VOICE_PROVIDER``).
        measure_duration: Returns an audio file's length in seconds.
        pause: Gap inserted after every line.

    Returns:
        StageResult whose value is the timed script.
    """
    if not script.lines:
        return StageResult.ok(script)

    voice_client = voice_client or default_voice_client()
    try:
        await voice_client.check_available()
    except Exception as e:
        logger.warning("Voice service unavailable (%s), using estimated timeline", e)
        error = e if isinstance(e, VoiceSynthesisError) else VoiceServiceUnavailable(str(e))
        return StageResult.recovered(placeholder_timeline(script, pause), error)

    audio_dir = Path(audio_dir)
    audio_dir.mkdir(parents=True, exist_ok=True)

    audio_refs = []
    durations = []
    failed_lines = []
    for index, line in enumerate(script.lines):
        logger.info("Synthesizing line %d/%d (%s)", index + 1, len(script.lines), line.speaker)
        try:
            audio_ref, duration = await _synthesize_line(line, index, audio_dir, voice_client, measure_duration)
        except VoiceServiceUnavailable as e:
            logger.warning("Voice service went away at line %d (%s), using estimated timeline", index, e)
            return StageResult.recovered(placeholder_timeline(script, pause), e)
        except (VoiceSynthesisError, OSError) as e:
            logger.warning("Line %d fell back to placeholder audio: %s", index, e)
            failed_lines.append(index)
            audio_ref = placeholder_audio_ref(script.id, index)
            duration = estimate_duration(line.text)
        audio_refs.append(audio_ref)
        durations.append(duration)

    lines = [line.model_copy(update={"audio_ref": ref}) for line, ref in zip(script.lines, audio_refs)]
    timed = script.with_lines(assign_timings(lines, durations, pause))
    logger.info("Audio ready for script %s: %.2fs", script.id, timed.duration_seconds)

    if failed_lines:
        error = VoiceSynthesisError(
            f"{len(failed_lines)} of {len(script.lines)} lines use placeholder audio",
            line_index=failed_lines[0],
        )
        return StageResult.recovered(timed, error)
    return StageResult.ok(timed)
