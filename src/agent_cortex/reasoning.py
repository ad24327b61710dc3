"""Reasoning collaborator boundary.

The core never talks to a model directly. It hands a prompt to anything
implementing Reasoner and parses what comes back, treating every malformed
response as "no usable answer".
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping, Protocol

from agent_cortex.models import Decision, clamp

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_SCORE = 0.5

CANDIDATES_MODE = "candidates"
DECISION_MODE = "decision"

_SCORED_LINE = re.compile(r"^\s*(?:[-*]|\d+[.)])?\s*(?P<thought>.+?)\s*\|\s*(?P<score>[-+]?\d*\.?\d+)\s*$")


class Reasoner(Protocol):
    """Turns a prompt into a structured response.

    options["mode"] is "candidates" (several scored next thoughts) or
    "decision" (one action with rationale and confidence).
    """

    def complete(self, prompt: str, options: Mapping[str, Any] | None = None) -> Any:
        ...


def _decode(response: Any) -> Any:
    if isinstance(response, (bytes, bytearray)):
        response = response.decode("utf-8", errors="replace")
    if isinstance(response, str):
        try:
            return json.loads(response)
        except ValueError:
            return response
    return response


def _score(value: Any) -> float | None:
    if value is None:
        return DEFAULT_CANDIDATE_SCORE
    try:
        return clamp(float(value))
    except (TypeError, ValueError):
        return None


def _candidate(item: Any) -> tuple[str, float] | None:
    if isinstance(item, str):
        thought, score = item, DEFAULT_CANDIDATE_SCORE
    elif isinstance(item, Mapping):
        thought = item.get("thought") or item.get("text") or item.get("step")
        score = _score(item.get("score"))
    else:
        return None
    if not isinstance(thought, str) or not thought.strip() or score is None:
        return None
    return thought.strip(), score


def _scored_lines(text: str) -> list[tuple[str, float]]:
    """Parse 'Thought | Score' lines."""
    found = []
    for line in text.splitlines():
        match = _SCORED_LINE.match(line)
        if match:
            found.append((match.group("thought"), clamp(float(match.group("score")))))
    return found


def parse_candidates(response: Any, limit: int) -> list[tuple[str, float]]:
    """Extract up to limit (thought, score) pairs from a collaborator response.

    Accepted shapes: {"candidates": [...]}, {"thoughts": [...]},
    {"steps": ["..."]}, a bare list, JSON text of any of these, or plain
    text with one "thought | score" per line. Anything else yields [].
    """
    data = _decode(response)
    if isinstance(data, str):
        items: list[Any] = _scored_lines(data)
        return items[:limit]

    if isinstance(data, Mapping):
        for key in ("candidates", "thoughts", "steps"):
            if isinstance(data.get(key), list):
                data = data[key]
                break
        else:
            return []

    if not isinstance(data, list):
        return []

    candidates = []
    for item in data:
        parsed = _candidate(item)
        if parsed is not None:
            candidates.append(parsed)
        if len(candidates) == limit:
            break
    return candidates


def parse_decision(response: Any) -> Decision | None:
    """Single-decision mode: one action, why, and how sure."""
    data = _decode(response)
    if not isinstance(data, Mapping):
        return None
    action = data.get("action") or data.get("action_or_thought") or data.get("thought")
    if not isinstance(action, str) or not action.strip():
        return None
    rationale = data.get("rationale") or data.get("reasoning") or ""
    try:
        confidence = clamp(float(data.get("confidence", 0.0)))
    except (TypeError, ValueError):
        confidence = 0.0
    return Decision(action=action.strip(), rationale=str(rationale), confidence=confidence)


def ask(reasoner: Reasoner, prompt: str, options: Mapping[str, Any]) -> Any:
    """Call the collaborator. A failing call counts as an empty response."""
    try:
        return reasoner.complete(prompt, dict(options))
    except Exception:
        logger.warning("Reasoning call failed (mode=%s)", options.get("mode"), exc_info=True)
        return None
