"""Core data models. Memories, skills, graph entities and planner thoughts."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, RootModel, field_validator


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a score into [low, high]. NaN collapses to low."""
    if value != value:
        return low
    return max(low, min(high, float(value)))


class MemoryScope(str, Enum):
    UNIVERSAL = "universal"   # shared across all users
    USER = "user"             # private to one user


class UniversalMemoryType(str, Enum):
    FACT = "fact"
    PATTERN = "pattern"
    SOLUTION = "solution"
    ERROR_FIX = "error_fix"
    OPTIMIZATION = "optimization"


class UserMemoryType(str, Enum):
    PREFERENCE = "preference"
    CONTEXT = "context"
    CONVERSATION = "conversation"
    TASK_HISTORY = "task_history"
    FEEDBACK = "feedback"


class SkillCategory(str, Enum):
    CODING = "coding"
    RESEARCH = "research"
    COMMUNICATION = "communication"
    ANALYSIS = "analysis"
    AUTOMATION = "automation"
    INTEGRATION = "integration"


@dataclass
class MemoryRecord:
    """A stored memory. Content is kept decompressed in memory."""

    content: str
    memory_type: str
    scope: MemoryScope = MemoryScope.UNIVERSAL
    user_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    importance: float = 0.5
    access_count: int = 0
    embedding: bytes | None = None  # float32 vector, numpy .tobytes()
    created_at: float = field(default_factory=time.time)
    last_accessed: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)


@dataclass
class MemoryHit:
    """One search result. similarity is None when the keyword fallback ran."""

    id: str
    type: str
    content: str
    importance: float
    similarity: float | None = None


@dataclass
class Preference:
    user_id: str
    key: str
    value: Any
    confidence: float = 0.7
    learned_from: str | None = None
    updated_at: float = field(default_factory=time.time)


class SkillKnowledge(RootModel[dict[str, Any]]):
    """Knowledge attached to a skill: string keys to JSON-compatible values.

    Merging is shallow. Keys in the newer blob overwrite keys in the older
    one; nested mappings are replaced whole, never merged.
    """

    root: dict[str, Any] = Field(default_factory=dict)

    @field_validator("root")
    @classmethod
    def _keys_are_names(cls, value: dict[str, Any]) -> dict[str, Any]:
        for key in value:
            if not key.strip():
                raise ValueError("knowledge keys must be non-empty strings")
        try:
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"knowledge must be JSON-serialisable: {exc}") from exc
        return value

    def merged(self, newer: SkillKnowledge | dict[str, Any]) -> SkillKnowledge:
        if not isinstance(newer, SkillKnowledge):
            newer = SkillKnowledge(newer)
        return SkillKnowledge({**self.root, **newer.root})


@dataclass
class Skill:
    name: str
    category: SkillCategory
    description: str = ""
    knowledge: dict[str, Any] = field(default_factory=dict)
    usage_count: int = 0
    success_rate: float = 0.0
    proficiency_level: int = 1
    last_used: float | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)


@dataclass
class SkillPattern:
    """A reusable action sequence distilled from a successful task."""

    name: str
    description: str
    action_sequence: list[str] = field(default_factory=list)
    trigger: str = ""
    usage_count: int = 1
    success_rate: float = 1.0
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)


@dataclass
class KnowledgeNode:
    name: str
    node_type: str
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)


@dataclass
class KnowledgeEdge:
    source_id: str
    target_id: str
    relation_type: str
    weight: float = 1.0
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)


@dataclass
class RelatedNode:
    relation_type: str
    weight: float
    node: KnowledgeNode


@dataclass
class ThoughtNode:
    """Planner-internal. Lives for one plan() call."""

    thought: str
    score: float
    depth: int
    id: str = "root"
    parent_id: str | None = None
    children: list[ThoughtNode] = field(default_factory=list)


@dataclass
class Decision:
    action: str
    rationale: str = ""
    confidence: float = 0.0


class Relation(BaseModel):
    target: str = Field(min_length=1)
    type: str = Field(min_length=1)


class Insight(BaseModel):
    """Something the agent learned and wants to keep."""

    type: str = "fact"
    content: str = Field(min_length=1)
    importance: float = 0.5
    entities: list[str] | None = None
    relations: list[Relation] | None = None

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, value: float) -> float:
        return clamp(value)

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        allowed = {t.value for t in UniversalMemoryType} | {"concept"}
        if value not in allowed:
            raise ValueError(f"unknown insight type: {value!r}")
        return value

    @property
    def memory_type(self) -> UniversalMemoryType:
        # concepts are stored as plain facts
        if self.type == "concept":
            return UniversalMemoryType.FACT
        return UniversalMemoryType(self.type)
