"""Supervision of the external video renderer.

The renderer runs as a subprocess that reads a props file (the script-data
descriptor) and writes one MP4. Success is judged by the output file, not by
the exit code alone.
"""
import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import Optional

import aiofiles
from pydantic import BaseModel

from threadreel import config
from threadreel.errors import CancellationError, RenderError
from threadreel.pipeline.timeline import CompositionPlan
from threadreel.script import Script

logger = logging.getLogger(__name__)

MOVIEPY_ENTRY_POINT = "threadreel.pipeline.video_composer"
REMOTION_CODECS = {"libx264": "h264", "libx265": "h265", "libvpx-vp9": "vp9"}
DIAGNOSTIC_CHARS = 4000
READ_CHUNK_BYTES = 4096


class RenderAssets(BaseModel):
    background_path: str
    audio_dir: Optional[str] = None


class RenderProps(BaseModel):
    """Everything the renderer needs, written as ``script.json``."""

    script_id: str
    background_id: str
    total_duration_seconds: float
    total_frames: int
    background_path: str
    script: Script
    plan: CompositionPlan

    @classmethod
    def build(cls, script: Script, plan: CompositionPlan, assets: RenderAssets) -> "RenderProps":
        return cls(
            script_id=script.id,
            background_id=script.background_id,
            total_duration_seconds=plan.duration_seconds,
            total_frames=plan.total_frames,
            background_path=assets.background_path,
            script=script,
            plan=plan,
        )


def build_render_command(
    renderer: str,
    entry_point: str,
    composition_id: str,
    output_path: str,
    props_file: str,
    codec_options: Optional[dict] = None,
) -> list[str]:
    """
    Build the argv for a render.

    ``moviepy`` runs the bundled worker module with the current interpreter;
    ``remotion`` runs ``npx remotion render``.
    """
    codec_options = codec_options or {}
    codec = codec_options.get("codec", "libx264")

    if renderer == "moviepy":
        command = [
            sys.executable, "-m", entry_point,
            "--props", props_file,
            "--output", output_path,
            "--composition", composition_id,
            "--codec", codec,
        ]
        if codec_options.get("scratch_dir"):
            command += ["--scratch", codec_options["scratch_dir"]]
        return command

    if renderer == "remotion":
        return [
            "npx", "remotion", "render",
            entry_point, composition_id, output_path,
            f"--props={props_file}",
            f"--codec={REMOTION_CODECS.get(codec, codec)}",
        ]

    raise ValueError(f"Unknown renderer: {renderer}")


async def _drain(stream: Optional[asyncio.StreamReader], buffer: bytearray, limit: int) -> None:
    """Read a pipe to EOF, keeping only the last ``limit`` bytes."""
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return
        buffer.extend(chunk)
        if len(buffer) > limit:
            del buffer[: len(buffer) - limit]


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()


def _diagnostics(stdout: bytes, stderr: bytes) -> str:
    text = stderr.decode("utf-8", errors="replace").strip() or stdout.decode("utf-8", errors="replace").strip()
    return text[-DIAGNOSTIC_CHARS:]


class RenderInvoker:
    """Runs one renderer process per script and verifies its output."""

    def __init__(
        self,
        work_dir: Path = config.WORK_DIR,
        output_dir: Path = config.OUTPUT_DIR,
        renderer: str = config.RENDERER,
        entry_point: Optional[str] = None,
        composition_id: str = config.REMOTION_COMPOSITION_ID,
        codec: str = config.RENDER_CODEC,
        timeout: float = config.RENDER_TIMEOUT_SECONDS,
        max_output_bytes: int = config.MAX_RENDER_OUTPUT_BYTES,
    ):
        self.work_dir = Path(work_dir)
        self.output_dir = Path(output_dir)
        self.renderer = renderer
        if entry_point is None:
            entry_point = MOVIEPY_ENTRY_POINT if renderer == "moviepy" else config.REMOTION_ENTRY_POINT
        self.entry_point = entry_point
        self.composition_id = composition_id
        self.codec = codec
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._cancelled: set[str] = set()

    def output_path_for(self, script_id: str) -> Path:
        return self.output_dir / f"{script_id}.mp4"

    def is_rendering(self, script_id: str) -> bool:
        process = self._processes.get(script_id)
        return process is not None and process.returncode is None

    async def render(self, script: Script, plan: CompositionPlan, assets: RenderAssets) -> str:
        """
        Render ``script`` and return the path of the finished video.

        Raises:
            RenderError: On timeout, non-zero exit, or a missing/empty output.
            CancellationError: If ``cancel`` was called while rendering.
        """
        script_dir = self.work_dir / script.id
        scratch_dir = script_dir / "render"
        props_path = script_dir / "script.json"
        output_path = self.output_path_for(script.id)

        scratch_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path.unlink(missing_ok=True)

        props = RenderProps.build(script, plan, assets)
        async with aiofiles.open(props_path, "w") as f:
            await f.write(props.model_dump_json(indent=2))

        command = build_render_command(
            self.renderer,
            self.entry_point,
            self.composition_id,
            str(output_path),
            str(props_path),
            {"codec": self.codec, "scratch_dir": str(scratch_dir)},
        )
        logger.info(
            "Rendering script %s (%d frames, %s background)",
            script.id, plan.total_frames, plan.background.kind,
        )
        self._cancelled.discard(script.id)

        try:
            exit_code, diagnostics = await self._run(script.id, command)
        finally:
            self._processes.pop(script.id, None)
            self._cleanup_transient(props_path, scratch_dir)

        if script.id in self._cancelled:
            self._cancelled.discard(script.id)
            raise CancellationError(script.id)
        if exit_code != 0:
            raise RenderError(
                f"Renderer exited with code {exit_code}",
                script_id=script.id,
                diagnostics=diagnostics,
                exit_code=exit_code,
            )
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise RenderError(
                "Renderer exited successfully but produced no output file",
                script_id=script.id,
                diagnostics=diagnostics,
                exit_code=exit_code,
            )

        logger.info("Rendered %s (%d bytes)", output_path, output_path.stat().st_size)
        return str(output_path)

    async def _run(self, script_id: str, command: list[str]) -> tuple[int, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RenderError(f"Could not start renderer: {e}", script_id=script_id) from e

        self._processes[script_id] = process
        stdout = bytearray()
        stderr = bytearray()
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _drain(process.stdout, stdout, self.max_output_bytes),
                    _drain(process.stderr, stderr, self.max_output_bytes),
                    process.wait(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            await _kill(process)
            raise RenderError(
                f"Render timed out after {self.timeout:.0f}s",
                script_id=script_id,
                diagnostics=_diagnostics(bytes(stdout), bytes(stderr)),
            )
        except asyncio.CancelledError:
            await _kill(process)
            raise

        return process.returncode, _diagnostics(bytes(stdout), bytes(stderr))

    def _cleanup_transient(self, props_path: Path, scratch_dir: Path) -> None:
        """Remove the props file and scratch dir; audio and output are kept."""
        try:
            props_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s: %s", props_path, e)
        shutil.rmtree(scratch_dir, ignore_errors=True)

    async def cancel(self, script_id: str) -> bool:
        """Kill the script's render process. Returns False if none is running."""
        process = self._processes.get(script_id)
        if process is None or process.returncode is not None:
            return False
        logger.info("Cancelling render for script %s", script_id)
        self._cancelled.add(script_id)
        try:
            process.kill()
        except ProcessLookupError:
            pass
        return True
