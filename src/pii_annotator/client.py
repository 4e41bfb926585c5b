"""Clients for the pattern/feedback store.

Both clients expose the same async surface, so a session can talk to a
remote store or an in-process one:

    async with PatternStoreClient("http://127.0.0.1:18792", timeout=5.0) as client:
        await client.submit_feedback(record)
        refined = await client.fetch_refined()

Every failure (transport error, timeout, non-2xx response, malformed body)
is raised as PatternStoreError.
"""

from __future__ import annotations
from typing import Any, Iterable

import httpx

from .errors import PatternStoreError
from .feedback_store import FeedbackStore
from .learner import relearn
from .logger import get_logger
from .matcher import match_pattern
from .ml_layer import FuzzyDetector
from .types import FeedbackRecord, MLMatch, PatternDefinition, RefinedPatternDefinition

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0


def parse_refined(data: Any) -> dict[str, RefinedPatternDefinition]:
    """Accept a list of refined records or an id-keyed mapping."""
    if isinstance(data, dict):
        if "patterns" in data:
            data = data["patterns"]
        else:
            data = [{"id": pid, **(rec or {})} for pid, rec in data.items()]
    refined = [RefinedPatternDefinition.from_dict(rec) for rec in data]
    return {rp.pattern_id: rp for rp in refined}


def _field(data: Any, key: str) -> list[Any]:
    """A list-valued field of a JSON object body."""
    if data is None:
        return []
    if not isinstance(data, dict):
        raise TypeError(f"expected a JSON object, got {type(data).__name__}")
    return data.get(key) or []


class PatternStoreClient:
    """HTTP client for a remote pattern store."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> PatternStoreClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise PatternStoreError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise PatternStoreError(f"{method} {path} failed: {e}") from e

        logger.debug("%s %s -> %d", method, path, response.status_code)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = body.get("error", response.text) if isinstance(body, dict) else response.text
            raise PatternStoreError(
                f"{method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PatternStoreError(f"{method} {path} returned invalid JSON") from e

    async def submit_feedback(self, record: FeedbackRecord) -> None:
        await self._request("POST", "/api/patterns/feedback", json=record.to_dict())

    async def fetch_refined(self) -> dict[str, RefinedPatternDefinition]:
        data = await self._request("GET", "/api/patterns/refined")
        try:
            return parse_refined(data or [])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PatternStoreError(f"Malformed refined pattern data: {e}") from e

    async def test_pattern(self, text: str, pattern: PatternDefinition) -> list[MLMatch]:
        """Remote ML/fuzzy detection; usable directly as a session detector."""
        data = await self._request("POST", "/api/patterns/test", json={
            "text": text,
            "pattern": {
                "id": pattern.id,
                "label": pattern.label,
                "type": pattern.type.value,
                "examples": list(pattern.examples),
            },
        })
        try:
            return [MLMatch.from_dict(m) for m in _field(data, "matches")]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PatternStoreError(f"Malformed detection result: {e}") from e

    __call__ = test_pattern

    async def save_patterns(self, patterns: Iterable[PatternDefinition]) -> list[PatternDefinition]:
        data = await self._request("POST", "/api/patterns", json={
            "patterns": [p.to_dict() for p in patterns],
        })
        try:
            return [PatternDefinition.from_dict(p) for p in _field(data, "patterns")]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PatternStoreError(f"Malformed saved pattern data: {e}") from e


class LocalStoreClient:
    """The client surface over an in-process FeedbackStore."""

    def __init__(self, store: FeedbackStore, *, fuzzy_threshold: float = 0.8) -> None:
        self.store = store
        self._fuzzy = FuzzyDetector(threshold=fuzzy_threshold)

    async def __aenter__(self) -> LocalStoreClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        pass

    async def submit_feedback(self, record: FeedbackRecord) -> None:
        try:
            self.store.submit_feedback(record)
        except ValueError as e:
            raise PatternStoreError(str(e), status_code=400) from e

    async def fetch_refined(self) -> dict[str, RefinedPatternDefinition]:
        return self.store.all_refined()

    async def test_pattern(self, text: str, pattern: PatternDefinition) -> list[MLMatch]:
        return detect_for_pattern(text, pattern, self._fuzzy)

    __call__ = test_pattern

    async def save_patterns(self, patterns: Iterable[PatternDefinition]) -> list[PatternDefinition]:
        return self.store.save_patterns(list(patterns))


def detect_for_pattern(
    text: str,
    pattern: PatternDefinition,
    fuzzy: FuzzyDetector,
) -> list[MLMatch]:
    """Store-side detection: learned rules and examples, then fuzzy near-copies."""
    if pattern.examples and not pattern.regex:
        pattern = relearn(pattern)
    found = [
        MLMatch(start_index=m.start, end_index=m.end, value=m.text,
                confidence=m.confidence, label=m.source)
        for m in match_pattern(text, pattern)
    ]
    found.extend(fuzzy.scan(text, pattern))
    return found
