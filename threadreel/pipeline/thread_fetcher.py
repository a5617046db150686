"""Reddit thread fetching with canned fallback data."""
import logging
import re
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from threadreel import config
from threadreel.errors import FetchError
from threadreel.pipeline.result import StageResult

logger = logging.getLogger(__name__)

THREAD_URL_PATTERN = re.compile(r"^https?://(www\.)?reddit\.com/r/(\w+)/comments/(\w+)")
MAX_FETCHED_COMMENTS = 20
REMOVED_MARKERS = {"[deleted]", "[removed]"}


class RawComment(BaseModel):
    author: str = "anonymous"
    content: str
    upvotes: int = 0


class RawThread(BaseModel):
    """Thread data as handed to the script synthesizer."""

    title: str
    url: str = ""
    author: str = "unknown"
    body: str = ""
    comments: list[RawComment] = Field(default_factory=list)
    upvotes: int = 0
    subreddit: str = ""

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Thread title cannot be empty")
        return value

    @field_validator("comments", mode="before")
    @classmethod
    def _normalize_comments(cls, value: Any) -> Any:
        # Comments may arrive as bare strings or as {author, content, upvotes}
        if isinstance(value, list):
            return [{"content": c} if isinstance(c, str) else c for c in value]
        return value


def is_valid_thread_url(url: str) -> bool:
    return bool(url) and THREAD_URL_PATTERN.match(url) is not None


def parse_thread_url(url: str) -> Optional[tuple[str, str]]:
    """Return ``(subreddit, post_id)`` for a thread URL, or None."""
    match = THREAD_URL_PATTERN.match(url or "")
    if not match:
        return None
    return match.group(2), match.group(3)


def fallback_thread(url: str = "") -> RawThread:
    """Canned thread used when the real one cannot be fetched."""
    parsed = parse_thread_url(url)
    return RawThread(
        title="AITA for refusing to share my lottery winnings with my roommate?",
        url=url,
        author="throwaway_story_time",
        body=(
            "My roommate and I have lived together for three years. Last week I won "
            "a small lottery prize with a ticket I bought alone, and now she says half "
            "of it is hers because we 'share everything'. I told her no. Now our whole "
            "friend group is taking sides."
        ),
        comments=[
            RawComment(author="reasonable_redditor", content="NTA. You bought the ticket, it's your money.", upvotes=4200),
            RawComment(author="devils_advocate", content="Did you ever split tickets before? That changes things.", upvotes=1800),
            RawComment(author="lurker42", content="Buy her a nice dinner and move on, it's not worth losing a friend.", upvotes=950),
        ],
        upvotes=12000,
        subreddit=parsed[0] if parsed else "AmItheAsshole",
    )


class RedditThreadClient:
    """Fetches a thread and its top-level comments from Reddit's JSON endpoint."""

    def __init__(self, user_agent: str = config.REDDIT_USER_AGENT, timeout: float = config.REDDIT_TIMEOUT_SECONDS):
        self.user_agent = user_agent
        self.timeout = timeout

    async def fetch_thread(self, url: str) -> RawThread:
        """
        Fetch a Reddit thread.

        Raises:
            FetchError: On an invalid URL, a transport/HTTP failure or an
                unexpected payload shape.
        """
        if not is_valid_thread_url(url):
            raise FetchError(f"Invalid Reddit thread URL: {url}", url=url)

        json_url = url.split("?", 1)[0].rstrip("/") + ".json"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
            ) as client:
                response = await client.get(json_url)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"Failed to fetch thread {url}: {e}", url=url) from e

        return self._parse_payload(payload, url)

    def _parse_payload(self, payload: Any, url: str) -> RawThread:
        try:
            post = payload[0]["data"]["children"][0]["data"]
            comment_children = payload[1]["data"]["children"] if len(payload) > 1 else []
        except (KeyError, IndexError, TypeError) as e:
            raise FetchError(f"Unexpected thread payload from {url}", url=url) from e
        if not isinstance(post, dict) or not isinstance(comment_children, list):
            raise FetchError(f"Unexpected thread payload from {url}", url=url)

        comments = []
        for child in comment_children:
            if not isinstance(child, dict) or child.get("kind") != "t1":
                continue
            data = child.get("data")
            if not isinstance(data, dict):
                continue
            body = data.get("body")
            body = body.strip() if isinstance(body, str) else ""
            if not body or body in REMOVED_MARKERS:
                continue
            comments.append(RawComment(
                author=str(data.get("author") or "anonymous"),
                content=body,
                upvotes=_score(data.get("score")),
            ))
            if len(comments) >= MAX_FETCHED_COMMENTS:
                break

        try:
            return RawThread(
                title=str(post.get("title") or ""),
                url=url,
                author=str(post.get("author") or "unknown"),
                body=str(post.get("selftext") or ""),
                comments=comments,
                upvotes=_score(post.get("score") or post.get("ups")),
                subreddit=str(post.get("subreddit") or ""),
            )
        except ValidationError as e:
            raise FetchError(f"Thread at {url} has no usable title", url=url) from e


def _score(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0


async def fetch_thread(url: str, client: Optional[RedditThreadClient] = None) -> StageResult[RawThread]:
    """Fetch a thread, falling back to canned data when the source fails."""
    client = client or RedditThreadClient()
    try:
        return StageResult.ok(await client.fetch_thread(url))
    except FetchError as e:
        logger.warning("Thread fetch failed (%s), using fallback thread data", e)
        return StageResult.recovered(fallback_thread(url), e)
