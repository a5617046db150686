"""Script model: the dialogue script that flows through every pipeline stage.

Scripts are immutable. Every change (adding a line, attaching audio, assigning
timings) returns a new ``Script`` with the same ``id``; the id is the join key
between the pipeline stages, the job map and the HTTP surface.
"""
import time
from typing import Iterable, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

# Audio refs with this prefix mark lines whose speech could not be synthesized
PLACEHOLDER_PREFIX = "placeholder://"


def generate_script_id() -> str:
    """Return a new unique script id, e.g. ``script_1718000000000_3f9c2a1b0``."""
    return f"script_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


def placeholder_audio_ref(script_id: str, line_index: int) -> str:
    return f"{PLACEHOLDER_PREFIX}{script_id}/line_{line_index}"


class DialogueLine(BaseModel):
    """One attributed utterance in a script."""

    model_config = ConfigDict(frozen=True)

    speaker: str
    text: str
    audio_ref: str = ""
    start_time: float = Field(0.0, ge=0)
    duration: float = Field(0.0, ge=0)

    @field_validator("speaker", "text")
    @classmethod
    def _not_blank(cls, value: str, info) -> str:
        if not value or not value.strip():
            raise ValueError(f"Dialogue {info.field_name} cannot be empty")
        return value

    @property
    def is_placeholder(self) -> bool:
        return self.audio_ref.startswith(PLACEHOLDER_PREFIX)

    @property
    def has_audio(self) -> bool:
        """True when the line points at a real synthesized audio file."""
        return bool(self.audio_ref) and not self.is_placeholder

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def to_plain_text(self) -> str:
        return f"{self.speaker}: {self.text}"


class Script(BaseModel):
    """Ordered dialogue lines plus background and speaker metadata."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    lines: tuple[DialogueLine, ...] = ()
    background_id: str = ""
    speakers: frozenset[str] = frozenset()

    @model_validator(mode="after")
    def _speakers_cover_lines(self) -> "Script":
        missing = {line.speaker for line in self.lines} - self.speakers
        if missing:
            raise ValueError(f"Speakers missing from speaker list: {sorted(missing)}")
        return self

    @field_serializer("speakers")
    def _serialize_speakers(self, speakers: frozenset[str]) -> list[str]:
        return sorted(speakers)

    @classmethod
    def create(
        cls,
        lines: Iterable[DialogueLine],
        background_id: str,
        speakers: Iterable[str] = (),
        script_id: Optional[str] = None,
    ) -> "Script":
        """Build a script, assigning a fresh id unless one is given.

        The speaker set is widened to include every line's speaker.
        """
        lines = tuple(lines)
        return cls(
            id=script_id or generate_script_id(),
            lines=lines,
            background_id=background_id,
            speakers=frozenset(speakers) | {line.speaker for line in lines},
        )

    @property
    def duration_seconds(self) -> float:
        """End of the last spoken line, or 0.0 for an empty script."""
        return max((line.end_time for line in self.lines), default=0.0)

    def with_lines(self, lines: Iterable[DialogueLine]) -> "Script":
        lines = tuple(lines)
        return self.model_copy(update={
            "lines": lines,
            "speakers": self.speakers | {line.speaker for line in lines},
        })

    def with_line(self, line: DialogueLine) -> "Script":
        return self.with_lines(self.lines + (line,))

    def with_audio(self, line_index: int, audio_ref: str) -> "Script":
        """Return a copy whose line ``line_index`` points at ``audio_ref``."""
        if not 0 <= line_index < len(self.lines):
            raise IndexError(f"Line index {line_index} out of range for script {self.id}")
        lines = list(self.lines)
        lines[line_index] = lines[line_index].model_copy(update={"audio_ref": audio_ref})
        return self.model_copy(update={"lines": tuple(lines)})
