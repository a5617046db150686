"""Tests for render subprocess supervision.

The real renderer is swapped for tiny ``python -c`` programs so these tests
exercise process handling without MoviePy or ffmpeg.
"""
import asyncio
import sys
from pathlib import Path

import pytest

from threadreel.errors import CancellationError, RenderError
from threadreel.pipeline import renderer as renderer_module
from threadreel.pipeline.renderer import RenderAssets, RenderInvoker, RenderProps, build_render_command
from threadreel.pipeline.timeline import build_composition
from threadreel.script import DialogueLine, Script

COPY_PROPS_TO_OUTPUT = "import shutil, sys; shutil.copy(sys.argv[2], sys.argv[1])"


def _use_program(monkeypatch, code: str):
    """Make the invoker run ``code`` with argv ``[output_path, props_file]``."""

    def fake_build(renderer, entry_point, composition_id, output_path, props_file, codec_options=None):
        return [sys.executable, "-c", code, output_path, props_file]

    monkeypatch.setattr(renderer_module, "build_render_command", fake_build)


def _script():
    return Script.create(
        [DialogueLine(speaker="narrator", text="Hello", audio_ref="/tmp/line_0.mp3", start_time=0.0, duration=2.0)],
        "minecraft-parkour",
        script_id="script_render",
    )


def _render_args(tmp_path: Path):
    script = _script()
    return script, build_composition(script, 60.0), RenderAssets(background_path=str(tmp_path / "bg.mp4"))


def _invoker(tmp_path: Path, **kwargs) -> RenderInvoker:
    return RenderInvoker(work_dir=tmp_path / "work", output_dir=tmp_path / "output", renderer="moviepy", **kwargs)


class TestRenderInvoker:
    """Outcome handling for the render subprocess."""

    @pytest.mark.asyncio
    async def test_success_returns_output_and_writes_props(self, tmp_path, monkeypatch):
        _use_program(monkeypatch, COPY_PROPS_TO_OUTPUT)
        invoker = _invoker(tmp_path)

        output = await invoker.render(*_render_args(tmp_path))

        assert output == str(tmp_path / "output" / "script_render.mp4")
        props = RenderProps.model_validate_json(Path(output).read_text())
        assert props.script_id == "script_render"
        assert props.background_id == "minecraft-parkour"
        assert props.total_frames == 90
        assert props.total_duration_seconds == 3.0
        assert props.background_path == str(tmp_path / "bg.mp4")

    @pytest.mark.asyncio
    async def test_transient_files_are_removed(self, tmp_path, monkeypatch):
        _use_program(monkeypatch, COPY_PROPS_TO_OUTPUT)
        invoker = _invoker(tmp_path)

        await invoker.render(*_render_args(tmp_path))

        script_dir = tmp_path / "work" / "script_render"
        assert not (script_dir / "script.json").exists()
        assert not (script_dir / "render").exists()

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_diagnostics(self, tmp_path, monkeypatch):
        _use_program(monkeypatch, "import sys; sys.stderr.write('ffmpeg exploded'); sys.exit(3)")

        with pytest.raises(RenderError) as exc_info:
            await _invoker(tmp_path).render(*_render_args(tmp_path))

        assert exc_info.value.exit_code == 3
        assert exc_info.value.script_id == "script_render"
        assert "ffmpeg exploded" in exc_info.value.diagnostics

    @pytest.mark.asyncio
    async def test_success_without_output_file_is_an_error(self, tmp_path, monkeypatch):
        _use_program(monkeypatch, "print('all good, honest')")

        with pytest.raises(RenderError, match="no output file"):
            await _invoker(tmp_path).render(*_render_args(tmp_path))

    @pytest.mark.asyncio
    async def test_empty_output_file_is_an_error(self, tmp_path, monkeypatch):
        _use_program(monkeypatch, "import sys; open(sys.argv[1], 'wb').close()")

        with pytest.raises(RenderError):
            await _invoker(tmp_path).render(*_render_args(tmp_path))

    @pytest.mark.asyncio
    async def test_timeout_kills_the_process(self, tmp_path, monkeypatch):
        _use_program(monkeypatch, "import time; time.sleep(30)")
        invoker = _invoker(tmp_path, timeout=0.5)

        with pytest.raises(RenderError, match="timed out"):
            await invoker.render(*_render_args(tmp_path))
        assert not invoker.is_rendering("script_render")

    @pytest.mark.asyncio
    async def test_captured_output_is_bounded(self, tmp_path, monkeypatch):
        _use_program(monkeypatch, "import sys; sys.stderr.write('x' * 200000); sys.exit(1)")

        with pytest.raises(RenderError) as exc_info:
            await _invoker(tmp_path, max_output_bytes=1000).render(*_render_args(tmp_path))

        assert 0 < len(exc_info.value.diagnostics) <= 1000

    @pytest.mark.asyncio
    async def test_cancel_kills_running_render(self, tmp_path, monkeypatch):
        _use_program(monkeypatch, "import time; time.sleep(30)")
        invoker = _invoker(tmp_path)

        task = asyncio.create_task(invoker.render(*_render_args(tmp_path)))
        for _ in range(200):
            if invoker.is_rendering("script_render"):
                break
            await asyncio.sleep(0.05)

        assert await invoker.cancel("script_render")
        with pytest.raises(CancellationError):
            await task
        assert not invoker.is_rendering("script_render")

    @pytest.mark.asyncio
    async def test_cancel_without_render_is_a_no_op(self, tmp_path):
        assert not await _invoker(tmp_path).cancel("script_missing")

    @pytest.mark.asyncio
    async def test_missing_executable_raises_render_error(self, tmp_path, monkeypatch):
        def fake_build(*args, **kwargs):
            return [str(tmp_path / "no-such-renderer")]

        monkeypatch.setattr(renderer_module, "build_render_command", fake_build)

        with pytest.raises(RenderError, match="Could not start renderer"):
            await _invoker(tmp_path).render(*_render_args(tmp_path))


class TestBuildRenderCommand:
    def test_moviepy_worker(self):
        command = build_render_command(
            "moviepy", "threadreel.pipeline.video_composer", "ThreadVideo", "/out/a.mp4", "/work/script.json",
            {"codec": "libx264", "scratch_dir": "/work/render"},
        )
        assert command[:3] == [sys.executable, "-m", "threadreel.pipeline.video_composer"]
        assert command[command.index("--props") + 1] == "/work/script.json"
        assert command[command.index("--output") + 1] == "/out/a.mp4"
        assert command[-2:] == ["--scratch", "/work/render"]

    def test_remotion(self):
        command = build_render_command(
            "remotion", "src/remotion/index.ts", "ThreadVideo", "/out/a.mp4", "/work/script.json", {"codec": "libx264"}
        )
        assert command == [
            "npx", "remotion", "render", "src/remotion/index.ts", "ThreadVideo", "/out/a.mp4",
            "--props=/work/script.json", "--codec=h264",
        ]

    def test_unknown_renderer(self):
        with pytest.raises(ValueError):
            build_render_command("blender", "x", "y", "out.mp4", "props.json")
