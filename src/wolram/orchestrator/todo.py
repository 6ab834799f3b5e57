"""Break a free-text request into an ordered list of TODO items.

An LLM decomposition is tried when a backend is available; keyword heuristics
are the fallback and the only path in stub mode.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum

from wolram.orchestrator.backend.base import (
    GenerationBackend,
    GenerationError,
    GenerationRequest,
)
from wolram.orchestrator.models import CapabilityTier
from wolram.orchestrator.routing import DEFAULT_ROUTING_TABLE, SUPPORTED_SKILLS, skill_scores

logger = logging.getLogger(__name__)

TODO_MAX_TOKENS = 1024
_CONJUNCTIONS = (", then ", " and then ", " then ", " and ")
_HIGH_PRIORITY_KEYWORDS = ("critical", "urgent", "block", "break", "crash", "security", "fix")
_LOW_PRIORITY_KEYWORDS = ("doc", "readme", "comment", "format", "style", "typo", "rename")
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(slots=True)
class TodoItem:
    id: int
    title: str
    priority: Priority
    skill: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "priority": self.priority.value,
            "skill": self.skill,
        }


class TodoParseError(ValueError):
    """LLM answer could not be turned into TODO items."""


def generate_todos(prompt: str, backend: GenerationBackend | None = None) -> list[TodoItem]:
    """LLM decomposition when possible, keyword heuristics otherwise."""

    if backend is not None:
        try:
            return generate_with_llm(backend, prompt)
        except (GenerationError, TodoParseError) as error:
            logger.info("LLM TODO generation failed, using keyword heuristics: %s", error)
    return generate_from_keywords(prompt)


def generate_with_llm(backend: GenerationBackend, prompt: str) -> list[TodoItem]:
    response = backend.send(
        GenerationRequest(
            prompt=_todo_prompt(prompt),
            model=CapabilityTier.HAIKU.api_model,
            max_tokens=TODO_MAX_TOKENS,
        ),
    )
    raw_items = _parse_todo_payload(response.text)
    items: list[TodoItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise TodoParseError("Failed to parse LLM TODO response: item is not an object")
        title = raw.get("title")
        if not isinstance(title, str) or not title.strip():
            raise TodoParseError("Failed to parse LLM TODO response: item without title")
        skill = raw.get("skill")
        items.append(
            TodoItem(
                id=len(items) + 1,
                title=title.strip(),
                priority=parse_priority(str(raw.get("priority", ""))),
                skill=skill if isinstance(skill, str) and skill in SUPPORTED_SKILLS else None,
            ),
        )
    return items


def generate_from_keywords(prompt: str) -> list[TodoItem]:
    """Split on list markers, then on conjunctions, else plan/execute/verify."""

    explicit = split_explicit_list(prompt)
    if len(explicit) >= 2:
        return _items_from_parts(explicit)

    clauses = split_on_conjunctions(prompt)
    if len(clauses) >= 2:
        return _items_from_parts(clauses)

    description = capitalize_first(prompt.strip())
    return [
        TodoItem(
            id=1,
            title=f"Plan approach for: {description}",
            priority=Priority.HIGH,
        ),
        TodoItem(
            id=2,
            title=description,
            priority=infer_priority(prompt),
            skill=infer_skill(prompt),
        ),
        TodoItem(
            id=3,
            title="Verify changes and run tests",
            priority=Priority.MEDIUM,
            skill="testing",
        ),
    ]


def parse_priority(value: str) -> Priority:
    normalized = value.strip().lower()
    if normalized == "high":
        return Priority.HIGH
    if normalized == "low":
        return Priority.LOW
    return Priority.MEDIUM


def split_explicit_list(text: str) -> list[str]:
    """Items of a `1.` / `1)` / `- ` / `* ` list, one per line."""

    items: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(("- ", "* ")):
            items.append(stripped[2:])
        elif len(stripped) > 2 and stripped[0].isdigit():
            marker = _first_marker(stripped)
            if marker is None:
                continue
            rest = stripped[marker + 1 :].strip()
            if rest:
                items.append(rest)
    return items


def split_on_conjunctions(text: str) -> list[str]:
    parts = [text]
    for delimiter in _CONJUNCTIONS:
        next_parts: list[str] = []
        for part in parts:
            position = part.lower().find(delimiter)
            if position < 0:
                next_parts.append(part)
                continue
            left = part[:position].strip()
            right = part[position + len(delimiter) :].strip()
            if left:
                next_parts.append(left)
            if right:
                next_parts.append(right)
        parts = next_parts
    return parts


def infer_skill(text: str) -> str | None:
    """Best-scoring skill, or None when no keyword matches."""

    best_skill: str | None = None
    best_score = 0
    for skill, score in skill_scores(text, DEFAULT_ROUTING_TABLE).items():
        if score > best_score:
            best_skill = skill
            best_score = score
    return best_skill


def infer_priority(text: str) -> Priority:
    lower = text.lower()
    if any(keyword in lower for keyword in _HIGH_PRIORITY_KEYWORDS):
        return Priority.HIGH
    if any(keyword in lower for keyword in _LOW_PRIORITY_KEYWORDS):
        return Priority.LOW
    return Priority.MEDIUM


def capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:]


def _items_from_parts(parts: list[str]) -> list[TodoItem]:
    items: list[TodoItem] = []
    for part in parts:
        stripped = part.strip()
        if not stripped:
            continue
        items.append(
            TodoItem(
                id=len(items) + 1,
                title=capitalize_first(stripped),
                priority=infer_priority(stripped),
                skill=infer_skill(stripped),
            ),
        )
    return items


def _first_marker(text: str) -> int | None:
    positions = [pos for pos in (text.find("."), text.find(")")) if pos >= 0]
    return min(positions) if positions else None


def _todo_prompt(prompt: str) -> str:
    return (
        "Break down this task into actionable TODO items. "
        "Respond with ONLY valid JSON, no other text.\n"
        "\n"
        "Format:\n"
        '{"todos": [\n'
        '  {"title": "<short imperative action>", "priority": "<high|medium|low>", '
        '"skill": "<skill_or_null>"}\n'
        "]}\n"
        "\n"
        "Rules:\n"
        "- Each title must be a short, actionable imperative phrase\n"
        "- priority must be one of: high, medium, low\n"
        f"- skill must be one of: {', '.join(SUPPORTED_SKILLS)}, or null\n"
        "- Generate 2-8 TODO items, ordered by suggested execution sequence\n"
        "- Assign high priority to foundational or blocking tasks, low to polish/docs\n"
        "\n"
        f"Task: {prompt}"
    )


def _parse_todo_payload(text: str) -> list[object]:
    candidate = text.strip()
    fenced = _FENCED_JSON.search(candidate)
    if fenced is not None:
        candidate = fenced.group(1)
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as error:
        raise TodoParseError(f"Failed to parse LLM TODO response: {error}") from error
    todos = payload.get("todos") if isinstance(payload, dict) else None
    if not isinstance(todos, list):
        raise TodoParseError("Failed to parse LLM TODO response: missing todos list")
    if not todos:
        raise TodoParseError("LLM returned empty TODO list")
    return todos
