"""Test doubles for the pipeline's external collaborators."""
import asyncio
import json
from pathlib import Path

from threadreel.errors import VoiceServiceUnavailable, VoiceSynthesisError
from threadreel.job_manager import JobManager
from threadreel.pipeline.orchestrator import PipelineOrchestrator
from threadreel.pipeline.script_transformer import LLMResponse
from threadreel.pipeline.thread_fetcher import RawComment, RawThread
from threadreel.pipeline.tts_generator import EDGE_VOICE_MAP

THREAD_URL = "https://www.reddit.com/r/AmItheAsshole/comments/abc123/aita_for_skipping_my_sisters_wedding/"


def sample_thread(comment_count: int = 2) -> RawThread:
    comments = [
        RawComment(author="top_commenter", content="NTA, your sister knew about the exam for months.", upvotes=900),
        RawComment(author="second_opinion", content="YTA, it's one day and she's your only sister.", upvotes=400),
        RawComment(author="third_voice", content="ESH honestly, you both could have talked earlier.", upvotes=120),
    ]
    return RawThread(
        title="AITA for skipping my sister's wedding?",
        url=THREAD_URL,
        author="exam_stressed",
        body="My sister scheduled her wedding on the day of my board exam. I chose the exam.",
        comments=comments[:comment_count],
        upvotes=5000,
        subreddit="AmItheAsshole",
    )


def script_json(background: str = "minecraft-parkour") -> str:
    return json.dumps({
        "lines": [
            {"speaker": "narrator", "text": "Would you skip your sister's wedding for an exam?"},
            {"speaker": "op", "text": "I picked the exam, and now my family is furious."},
            {"speaker": "commenter1", "text": "NTA, she knew the date for months."},
            {"speaker": "narrator", "text": "What would you do? Comment below."},
        ],
        "background": background,
        "speakers": ["narrator", "op", "commenter1"],
    })


class FakeThreadClient:
    def __init__(self, thread: RawThread = None, error: Exception = None):
        self.thread = thread or sample_thread()
        self.error = error
        self.urls = []

    async def fetch_thread(self, url: str) -> RawThread:
        self.urls.append(url)
        if self.error:
            raise self.error
        return self.thread


class FakeLLM:
    def __init__(self, content: str = None, error: Exception = None):
        self.content = script_json() if content is None else content
        self.error = error
        self.prompts = []

    async def generate(self, prompt: str, max_tokens: int = 1500, temperature: float = 0.7) -> LLMResponse:
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return LLMResponse(content=self.content)


class FakeVoiceClient:
    """Voice client that fails on chosen call indices."""

    voice_map = EDGE_VOICE_MAP

    def __init__(self, fail_lines=(), unavailable: bool = False, drop_at: int = None):
        self.fail_lines = set(fail_lines)
        self.unavailable = unavailable
        self.drop_at = drop_at
        self.calls = []

    async def check_available(self) -> None:
        if self.unavailable:
            raise VoiceServiceUnavailable("voice service is down")

    def default_voice_settings(self) -> dict:
        return {"rate": "+0%"}

    async def synthesize(self, text: str, voice_id: str, voice_settings: dict = None) -> bytes:
        index = len(self.calls)
        self.calls.append((text, voice_id))
        if index == self.drop_at:
            raise VoiceServiceUnavailable("voice service went away")
        if index in self.fail_lines:
            raise VoiceSynthesisError("synthesis failed")
        return b"ID3fake-mp3-bytes"


class FakeRenderer:
    """Stands in for RenderInvoker; writes a tiny file as the video."""

    def __init__(self, output_dir: Path, error: Exception = None, block: bool = False):
        self.output_dir = Path(output_dir)
        self.error = error
        self.block = block
        self.rendered = []
        self.cancelled = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    def output_path_for(self, script_id: str) -> Path:
        return self.output_dir / f"{script_id}.mp4"

    async def render(self, script, plan, assets) -> str:
        self.rendered.append((script, plan, assets))
        self.started.set()
        if self.block:
            await self.release.wait()
        if self.error:
            raise self.error
        output_path = self.output_path_for(script.id)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"fake-video")
        return str(output_path)

    async def cancel(self, script_id: str) -> bool:
        self.cancelled.append(script_id)
        return True


class RecordingJobManager(JobManager):
    """JobManager that remembers every stage it was asked to enter."""

    def __init__(self):
        super().__init__()
        self.transitions = []

    async def advance(self, script_id, status):
        self.transitions.append(status)
        return await super().advance(script_id, status)


def make_orchestrator(
    tmp_path: Path,
    renderer=None,
    thread_client=None,
    llm=None,
    voice_client=None,
    job_manager=None,
    with_gameplay: bool = True,
):
    gameplay_dir = tmp_path / "gameplay"
    gameplay_dir.mkdir(exist_ok=True)
    if with_gameplay:
        (gameplay_dir / "minecraft-parkour.mp4").write_bytes(b"not really a video")

    return PipelineOrchestrator(
        job_manager=job_manager or RecordingJobManager(),
        renderer=renderer or FakeRenderer(tmp_path / "output"),
        thread_client=thread_client or FakeThreadClient(),
        llm=llm or FakeLLM(),
        voice_client=voice_client or FakeVoiceClient(),
        work_dir=tmp_path / "work",
        gameplay_dir=gameplay_dir,
        probe_duration=lambda path: 30.0,
        measure_duration=lambda path: 2.0,
    )
