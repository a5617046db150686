"""Pipeline orchestration: fetch -> script -> audio -> render, one task per job."""
import asyncio
import logging
import shutil
from pathlib import Path
from typing import Callable, Optional

from threadreel import config
from threadreel.errors import CancellationError, RenderError
from threadreel.job_manager import JobManager, job_manager as default_job_manager
from threadreel.models import JobStatus, JobStatusResponse
from threadreel.pipeline.assets import list_backgrounds, probe_video_duration, resolve_background
from threadreel.pipeline.renderer import RenderAssets, RenderInvoker
from threadreel.pipeline.result import StageResult
from threadreel.pipeline.script_transformer import OllamaClient, synthesize_script
from threadreel.pipeline.thread_fetcher import RedditThreadClient, fetch_thread
from threadreel.pipeline.timeline import build_composition
from threadreel.pipeline.tts_generator import VoiceClient, measure_audio_duration, synthesize_audio
from threadreel.script import Script, generate_script_id

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Video generation failed. Please try again later."


class PipelineOrchestrator:
    """
    Runs the generation pipeline and owns every job's status.

    Stages run strictly in order for one job; separate jobs run as separate
    asyncio tasks. Fetch, script and audio failures are absorbed by their
    stages and recorded as warnings. A render failure or any unexpected
    error fails the job.
    """

    def __init__(
        self,
        job_manager: Optional[JobManager] = None,
        renderer: Optional[RenderInvoker] = None,
        thread_client: Optional[RedditThreadClient] = None,
        llm: Optional[OllamaClient] = None,
        voice_client: Optional[VoiceClient] = None,
        work_dir: Path = config.WORK_DIR,
        gameplay_dir: Path = config.GAMEPLAY_DIR,
        probe_duration: Callable[[str], float] = probe_video_duration,
        measure_duration: Callable[[str], Optional[float]] = measure_audio_duration,
    ):
        self.job_manager = job_manager or default_job_manager
        self.work_dir = Path(work_dir)
        self.renderer = renderer or RenderInvoker(work_dir=self.work_dir)
        self.thread_client = thread_client
        self.llm = llm
        self.voice_client = voice_client
        self.gameplay_dir = Path(gameplay_dir)
        self.probe_duration = probe_duration
        self.measure_duration = measure_duration
        self._tasks: dict[str, asyncio.Task] = {}

    async def submit(self, thread_url: str, background_id: Optional[str] = None) -> str:
        """Create a pending job and start its pipeline in the background."""
        script_id = generate_script_id()
        await self.job_manager.create_job(script_id, thread_url)
        task = asyncio.create_task(self.run(script_id, thread_url, background_id))
        self._tasks[script_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(script_id, None))
        logger.info("Queued job %s for %s", script_id, thread_url)
        return script_id

    async def wait(self, script_id: str) -> None:
        """Wait for a submitted job's task to finish."""
        task = self._tasks.get(script_id)
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _enter(self, script_id: str, status: JobStatus):
        if not await self.job_manager.advance(script_id, status):
            # Only a cancelled (or vanished) job refuses to advance
            raise CancellationError(script_id)
        logger.info("Job %s: %s", script_id, status.value)

    async def _record(self, script_id: str, stage: str, result: StageResult):
        if result.degraded:
            await self.job_manager.add_warning(script_id, f"{stage}: {result.error}")

    async def run(self, script_id: str, thread_url: str, background_id: Optional[str] = None) -> Optional[str]:
        """
        Run every stage for one job.

        Returns:
            Path of the rendered video, or None if the job failed or was
            cancelled.
        """
        try:
            await self._enter(script_id, JobStatus.FETCHING)
            thread_result = await fetch_thread(thread_url, self.thread_client)
            await self._record(script_id, "fetch", thread_result)

            await self._enter(script_id, JobStatus.SCRIPTING)
            script_result = await synthesize_script(
                thread_result.value,
                script_id=script_id,
                background_id=background_id,
                llm=self.llm,
                backgrounds=list_backgrounds(str(self.gameplay_dir)),
            )
            await self._record(script_id, "script", script_result)

            await self._enter(script_id, JobStatus.SYNTHESIZING_AUDIO)
            audio_result = await synthesize_audio(
                script_result.value,
                self.work_dir / script_id / "audio",
                voice_client=self.voice_client,
                measure_duration=self.measure_duration,
            )
            await self._record(script_id, "audio", audio_result)

            await self._enter(script_id, JobStatus.RENDERING)
            video_path = await self._render(audio_result.value)

            if not await self.job_manager.mark_job_complete(script_id, video_path):
                raise CancellationError(script_id)
            logger.info("Job %s completed: %s", script_id, video_path)
            return video_path

        except CancellationError:
            await self.job_manager.mark_job_cancelled(script_id)
            logger.info("Job %s cancelled", script_id)
            return None
        except asyncio.CancelledError:
            await self.job_manager.mark_job_cancelled(script_id)
            logger.info("Job %s cancelled", script_id)
            raise
        except Exception as e:
            logger.exception("Job %s failed", script_id)
            await self.job_manager.mark_job_error(script_id, str(e) or type(e).__name__)
            return None

    async def _render(self, script: Script) -> str:
        background_path = resolve_background(script.background_id, str(self.gameplay_dir))
        if not background_path:
            raise RenderError(
                f"No gameplay clips found in {self.gameplay_dir}. Add MP4 files to the gameplay directory.",
                script_id=script.id,
            )
        background_seconds = await asyncio.to_thread(self.probe_duration, background_path)
        plan = build_composition(script, background_seconds)
        assets = RenderAssets(
            background_path=background_path,
            audio_dir=str(self.work_dir / script.id / "audio"),
        )
        return await self.renderer.render(script, plan, assets)

    async def cancel(self, script_id: str) -> JobStatus:
        """
        Cancel a job. Cancelling a finished job is a no-op.

        Returns:
            The job's status after the call.

        Raises:
            KeyError: If no job has this id.
        """
        job = await self.job_manager.get_job(script_id)
        if job is None:
            raise KeyError(script_id)
        if job.is_terminal:
            return job.status

        await self.job_manager.mark_job_cancelled(script_id)
        await self.renderer.cancel(script_id)
        task = self._tasks.get(script_id)
        if task is not None and not task.done():
            task.cancel()
        logger.info("Cancellation requested for job %s", script_id)
        return JobStatus.CANCELLED

    async def get_status(self, script_id: str) -> Optional[JobStatusResponse]:
        """Snapshot of a job's stage and progress for polling clients."""
        job = await self.job_manager.get_job(script_id)
        if job is None:
            return None

        error = job.error
        if error and config.is_production():
            error = GENERIC_ERROR_MESSAGE

        video_url = None
        if job.status == JobStatus.COMPLETED and job.video_path:
            video_url = f"/api/videos/{script_id}"

        return JobStatusResponse(
            script_id=job.script_id,
            stage=job.status,
            progress=job.progress,
            message=job.message,
            video_url=video_url,
            error=error,
            warnings=job.warnings,
        )

    async def cleanup(self, script_id: str) -> bool:
        """
        Delete a finished job's working files (audio, props, scratch).

        Returns:
            True if a directory was removed, False if there was nothing left.

        Raises:
            KeyError: If no job has this id.
            RuntimeError: If the job is still running.
        """
        job = await self.job_manager.get_job(script_id)
        if job is None:
            raise KeyError(script_id)
        if not job.is_terminal:
            raise RuntimeError(f"Job {script_id} is still {job.status.value}")

        script_dir = self.work_dir / script_id
        if not script_dir.exists():
            return False
        shutil.rmtree(script_dir, ignore_errors=True)
        logger.info("Removed working files for %s", script_id)
        return True

    async def delete_video(self, script_id: str) -> bool:
        output_path = self.renderer.output_path_for(script_id)
        if not output_path.exists():
            return False
        output_path.unlink()
        return True
