"""Tests for the immutable dialogue script model."""
import pytest
from pydantic import ValidationError

from threadreel.script import DialogueLine, Script, generate_script_id, placeholder_audio_ref


class TestDialogueLine:
    """Validation and derived properties of a single line."""

    def test_rejects_blank_text(self):
        with pytest.raises(ValidationError):
            DialogueLine(speaker="narrator", text="   ")

    def test_rejects_blank_speaker(self):
        with pytest.raises(ValidationError):
            DialogueLine(speaker="", text="Hello there")

    def test_rejects_negative_timing(self):
        with pytest.raises(ValidationError):
            DialogueLine(speaker="op", text="Hi", start_time=-1.0)
        with pytest.raises(ValidationError):
            DialogueLine(speaker="op", text="Hi", duration=-0.5)

    def test_placeholder_audio_is_not_real_audio(self):
        line = DialogueLine(speaker="op", text="Hi", audio_ref=placeholder_audio_ref("script_1", 0))
        assert line.is_placeholder
        assert not line.has_audio

    def test_real_audio(self):
        line = DialogueLine(speaker="op", text="Hi", audio_ref="/tmp/line_0.mp3")
        assert line.has_audio
        assert not line.is_placeholder

    def test_end_time_and_word_count(self):
        line = DialogueLine(speaker="op", text="one two three", start_time=1.5, duration=2.0)
        assert line.end_time == 3.5
        assert line.word_count == 3
        assert line.to_plain_text() == "op: one two three"

    def test_lines_are_immutable(self):
        line = DialogueLine(speaker="op", text="Hi")
        with pytest.raises(ValidationError):
            line.text = "Changed"


class TestScript:
    """Construction, invariants and copy-on-write updates."""

    def _lines(self):
        return [
            DialogueLine(speaker="narrator", text="Story time."),
            DialogueLine(speaker="op", text="So this happened."),
        ]

    def test_create_assigns_id_and_collects_speakers(self):
        script = Script.create(self._lines(), "minecraft-parkour")
        assert script.id.startswith("script_")
        assert script.speakers == frozenset({"narrator", "op"})
        assert script.background_id == "minecraft-parkour"

    def test_create_keeps_extra_speakers(self):
        script = Script.create(self._lines(), "bg", speakers=["commenter1"], script_id="script_x")
        assert script.id == "script_x"
        assert script.speakers == frozenset({"narrator", "op", "commenter1"})

    def test_rejects_line_speaker_missing_from_speaker_list(self):
        with pytest.raises(ValidationError):
            Script(id="script_x", lines=tuple(self._lines()), speakers=frozenset({"narrator"}))

    def test_rejects_empty_id(self):
        with pytest.raises(ValidationError):
            Script(id="", lines=())

    def test_with_audio_returns_new_script(self):
        script = Script.create(self._lines(), "bg")
        updated = script.with_audio(1, "/tmp/line_1.mp3")

        assert updated.id == script.id
        assert updated.lines[1].audio_ref == "/tmp/line_1.mp3"
        assert script.lines[1].audio_ref == ""

    def test_with_audio_out_of_range(self):
        script = Script.create(self._lines(), "bg")
        with pytest.raises(IndexError):
            script.with_audio(5, "/tmp/x.mp3")

    def test_with_line_appends_and_adds_speaker(self):
        script = Script.create(self._lines(), "bg")
        updated = script.with_line(DialogueLine(speaker="commenter1", text="NTA"))

        assert len(updated.lines) == 3
        assert "commenter1" in updated.speakers
        assert len(script.lines) == 2

    def test_duration_is_end_of_last_line(self):
        lines = [
            DialogueLine(speaker="narrator", text="a", start_time=0.0, duration=2.0),
            DialogueLine(speaker="op", text="b", start_time=2.5, duration=3.0),
        ]
        assert Script.create(lines, "bg").duration_seconds == 5.5

    def test_duration_of_empty_script_is_zero(self):
        assert Script.create([], "bg").duration_seconds == 0.0

    def test_serializes_to_json_and_back(self):
        script = Script.create(self._lines(), "bg", speakers=["commenter2"])
        data = script.model_dump(mode="json")

        assert data["speakers"] == ["commenter2", "narrator", "op"]
        assert Script.model_validate_json(script.model_dump_json()).model_dump() == script.model_dump()

    def test_generated_ids_are_unique(self):
        assert len({generate_script_id() for _ in range(100)}) == 100
