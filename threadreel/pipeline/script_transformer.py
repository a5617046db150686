"""LLM-powered conversion of a Reddit thread into a dialogue script."""
import json
import logging
import re
from typing import Iterable, Optional

import httpx
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from threadreel import config
from threadreel.errors import SchemaValidationError
from threadreel.pipeline.result import StageResult
from threadreel.pipeline.thread_fetcher import RawThread
from threadreel.script import DialogueLine, Script

logger = logging.getLogger(__name__)

OLLAMA_URL = config.OLLAMA_URL
OLLAMA_MODEL = config.OLLAMA_MODEL

DEFAULT_BACKGROUND_ID = "minecraft-parkour"
PROMPT_COMMENT_LIMIT = 3
TEMPLATE_COMMENT_LIMIT = 3
TEMPLATE_BODY_CHARS = 400

SCRIPT_PROMPT = """You are an expert content creator who turns Reddit threads into engaging TikTok/Reels-style video scripts.

Your task:
1. Read the Reddit thread below
2. Write a short dialogue script with clear speakers
3. Keep it engaging and suitable for short-form video, under 60 seconds when spoken
4. Pick the background that fits the mood best from: {backgrounds}

Speakers:
- "narrator" introduces the story and closes the video
- "op" speaks the original poster's words in first person
- "commenter1", "commenter2", ... speak the top comments

Output ONLY a JSON object, no markdown, with exactly this shape:
{{
  "lines": [{{"speaker": "narrator", "text": "spoken text"}}],
  "background": "one of the backgrounds above",
  "speakers": ["narrator", "op", "commenter1"]
}}

Thread:
Title: {title}
Author: u/{author}
Subreddit: r/{subreddit}
Content: {body}

Top Comments:
{comments}"""


class LLMUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResponse(BaseModel):
    content: str
    usage: LLMUsage = Field(default_factory=LLMUsage)


class LinePayload(BaseModel):
    speaker: str
    text: str

    @field_validator("speaker", "text")
    @classmethod
    def _not_blank(cls, value: str, info) -> str:
        if not value.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return value.strip()


class ScriptPayload(BaseModel):
    """The JSON shape the model must answer with."""

    lines: list[LinePayload] = Field(min_length=1)
    background: str = ""
    speakers: list[str] = Field(default_factory=list, validation_alias=AliasChoices("speakers", "characters"))


class OllamaClient:
    """Minimal async client for Ollama's generate endpoint."""

    def __init__(self, url: str = OLLAMA_URL, model: str = OLLAMA_MODEL, timeout: float = config.LLM_TIMEOUT_SECONDS):
        self.url = url
        self.model = model
        self.timeout = timeout

    async def generate(
        self,
        prompt: str,
        max_tokens: int = config.LLM_MAX_TOKENS,
        temperature: float = config.LLM_TEMPERATURE,
    ) -> LLMResponse:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.url,
                json={
                    "model": self.model,
                    "prompt": prompt,
                    "stream": False,
                    "format": "json",
                    "options": {"num_predict": max_tokens, "temperature": temperature},
                },
            )
            response.raise_for_status()
            data = response.json()

        prompt_tokens = data.get("prompt_eval_count", 0)
        completion_tokens = data.get("eval_count", 0)
        return LLMResponse(
            content=data.get("response", ""),
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )


def build_prompt(raw_thread: RawThread, backgrounds: Iterable[str] = ()) -> str:
    """Render the script-generation prompt for a thread."""
    comments = "\n".join(
        f"{i}. {c.author}: {c.content}"
        for i, c in enumerate(raw_thread.comments[:PROMPT_COMMENT_LIMIT], start=1)
    )
    return SCRIPT_PROMPT.format(
        backgrounds=", ".join(backgrounds) or DEFAULT_BACKGROUND_ID,
        title=raw_thread.title,
        author=raw_thread.author,
        subreddit=raw_thread.subreddit or "unknown",
        body=raw_thread.body or "(no text)",
        comments=comments or "(no comments)",
    )


def parse_script_response(content: str) -> ScriptPayload:
    """
    Parse and validate a raw model response.

    Raises:
        SchemaValidationError: If the content is not a JSON object with a
            non-empty ``lines`` array of non-empty speaker/text pairs.
    """
    text = content.strip()
    # Models sometimes wrap JSON in a fenced block despite instructions
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaValidationError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise SchemaValidationError("Response must be a JSON object")

    try:
        return ScriptPayload.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise SchemaValidationError(f"Invalid script response at {field}: {first['msg']}", field=field) from e


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3].rstrip() + "..."


def template_script(
    raw_thread: RawThread,
    script_id: Optional[str] = None,
    background_id: Optional[str] = None,
) -> Script:
    """Build a fixed-shape script straight from the thread. Never fails."""
    subreddit = f"r/{raw_thread.subreddit}" if raw_thread.subreddit else "Reddit"
    lines = [
        DialogueLine(speaker="narrator", text=f"Here's a story from {subreddit}: {raw_thread.title.strip()}"),
        DialogueLine(speaker="op", text=_truncate(raw_thread.body.strip() or raw_thread.title.strip(), TEMPLATE_BODY_CHARS)),
    ]

    comments = [c for c in raw_thread.comments if c.content.strip()]
    for i, comment in enumerate(comments[:TEMPLATE_COMMENT_LIMIT]):
        lines.append(DialogueLine(
            speaker=f"commenter{i % 2 + 1}",
            text=_truncate(comment.content.strip(), TEMPLATE_BODY_CHARS),
        ))

    lines.append(DialogueLine(
        speaker="narrator",
        text="What do you think? Let us know in the comments and follow for more stories!",
    ))
    return Script.create(lines, background_id or DEFAULT_BACKGROUND_ID, script_id=script_id)


async def synthesize_script(
    raw_thread: RawThread,
    script_id: Optional[str] = None,
    background_id: Optional[str] = None,
    llm: Optional[OllamaClient] = None,
    backgrounds: Iterable[str] = (),
) -> StageResult[Script]:
    """Turn a thread into a dialogue script.

    Any failure of the model call or of response validation falls back to
    ``template_script``, so this stage always yields a usable script.

    Args:
        raw_thread: The fetched thread.
        script_id: Id to give the script (a fresh one when omitted).
        background_id: Caller-chosen background; overrides the model's pick.
        llm: Generative client (defaults to ``OllamaClient``).
        backgrounds: Background ids the model may choose from.
    """
    llm = llm or OllamaClient()
    backgrounds = list(backgrounds)

    try:
        response = await llm.generate(build_prompt(raw_thread, backgrounds))
        payload = parse_script_response(response.content)
        lines = [DialogueLine(speaker=line.speaker, text=line.text) for line in payload.lines]
        chosen_background = background_id or payload.background.strip() or DEFAULT_BACKGROUND_ID
        script = Script.create(lines, chosen_background, speakers=payload.speakers, script_id=script_id)
        logger.info(
            "Generated %d-line script for '%s' (%d tokens)",
            len(script.lines), raw_thread.title, response.usage.total_tokens,
        )
        return StageResult.ok(script)
    except SchemaValidationError as e:
        logger.warning("Script response failed validation (%s), using template script", e)
        return StageResult.recovered(template_script(raw_thread, script_id, background_id), e)
    except Exception as e:
        logger.warning("Script generation failed (%s), using template script", e)
        error = SchemaValidationError(f"Script generation failed: {e}")
        return StageResult.recovered(template_script(raw_thread, script_id, background_id), error)
