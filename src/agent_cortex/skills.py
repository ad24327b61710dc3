"""Skill registry: named capabilities with running success statistics."""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator

from agent_cortex.models import Skill, SkillCategory, SkillKnowledge, SkillPattern
from agent_cortex.storage import Storage

logger = logging.getLogger(__name__)

BASE_SKILLS: list[dict[str, Any]] = [
    {
        "name": "web_browsing",
        "category": SkillCategory.RESEARCH,
        "description": "Navigate websites, search for information, and extract data from web pages",
        "knowledge": {"patterns": ["NAVIGATE:url", "TYPE:search_query", "CLICK:element"]},
    },
    {
        "name": "code_execution",
        "category": SkillCategory.CODING,
        "description": "Write and execute code in multiple programming languages",
        "knowledge": {"languages": ["javascript", "python", "typescript"],
                      "patterns": ["write", "test", "debug"]},
    },
    {
        "name": "github_integration",
        "category": SkillCategory.INTEGRATION,
        "description": "Interact with GitHub repositories, create branches, and manage pull requests",
        "knowledge": {"actions": ["clone", "branch", "commit", "push", "pr"]},
    },
    {
        "name": "testing",
        "category": SkillCategory.CODING,
        "description": "Write and run automated tests for code",
        "knowledge": {"frameworks": ["jest", "unittest", "pytest"]},
    },
    {
        "name": "task_planning",
        "category": SkillCategory.ANALYSIS,
        "description": "Break down complex tasks into manageable steps",
        "knowledge": {"patterns": ["analyze", "plan", "execute", "verify"]},
    },
]

_TRIGGER = re.compile(r"- \*\*Trigger\*\*: (.*)")


class SkillRegistry:
    """Skills keyed by name. Learning twice merges, using updates statistics.

    record_usage() is serialized per skill name: concurrent calls on the
    same skill never lose an update.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        # name -> [lock, holders]; dropped when the last holder leaves
        self._locks: dict[str, list[Any]] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _lock_for(self, name: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(name, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[name]

    # ── learn ──────────────────────────────────────────────────────────

    def learn_skill(self, name: str, category: SkillCategory | str,
                    description: str,
                    knowledge: SkillKnowledge | dict[str, Any] | None = None) -> str | None:
        """Create a skill, or merge into the existing one with this name.

        On merge the description is replaced and knowledge keys from this
        call overwrite stored ones. Raises pydantic.ValidationError if the
        knowledge is not a JSON-compatible mapping.
        """
        if not isinstance(knowledge, SkillKnowledge):
            knowledge = SkillKnowledge(knowledge or {})
        category = SkillCategory(category)

        with self._lock_for(name):
            try:
                existing = self._storage.load_skill(name)
                if existing is not None:
                    merged = SkillKnowledge(existing.knowledge).merged(knowledge)
                    self._storage.update_skill_definition(name, description, merged.root)
                    return existing.id

                skill = Skill(
                    name=name,
                    category=category,
                    description=description,
                    knowledge=knowledge.root,
                )
                self._storage.insert_skill(skill)
            except sqlite3.Error:
                logger.error("Error learning skill %r", name, exc_info=True)
                return None
        logger.info("Learned new skill %r (%s)", name, category.value)
        return skill.id

    def record_usage(self, name: str, success: bool) -> Skill | None:
        """Count one use of a skill and fold the outcome into success_rate.

        Returns the updated skill, or None if it does not exist or the
        update failed.
        """
        with self._lock_for(name):
            try:
                skill = self._storage.update_skill_usage(name, bool(success))
            except sqlite3.Error:
                logger.error("Error recording usage of skill %r", name, exc_info=True)
                return None
        if skill is None:
            logger.debug("Usage recorded for unknown skill %r", name)
        return skill

    # ── read ───────────────────────────────────────────────────────────

    def get_skill(self, name: str) -> Skill | None:
        try:
            return self._storage.load_skill(name)
        except sqlite3.Error:
            logger.error("Error getting skill %r", name, exc_info=True)
            return None

    def get_by_category(self, category: SkillCategory | str) -> list[Skill]:
        try:
            return self._storage.skills_by_category(SkillCategory(category))
        except sqlite3.Error:
            logger.error("Error getting skills by category", exc_info=True)
            return []

    def get_most_used(self, limit: int = 10) -> list[Skill]:
        try:
            return self._storage.most_used_skills(limit)
        except sqlite3.Error:
            logger.error("Error getting most used skills", exc_info=True)
            return []

    def search_skills(self, query: str, limit: int = 10) -> list[Skill]:
        """Substring match over name and description, most used first."""
        try:
            return self._storage.search_skills(query, limit)
        except sqlite3.Error:
            logger.error("Error searching skills", exc_info=True)
            return []

    def get_all(self) -> list[Skill]:
        try:
            return self._storage.all_skills()
        except sqlite3.Error:
            logger.error("Error getting all skills", exc_info=True)
            return []

    # ── patterns ───────────────────────────────────────────────────────

    def record_pattern(self, name: str, description: str,
                       actions: list[str], trigger: str = "") -> str | None:
        """Keep a successful action sequence for reuse."""
        pattern = SkillPattern(
            name=name,
            description=description,
            action_sequence=list(actions),
            trigger=trigger,
        )
        try:
            self._storage.save_pattern(pattern)
        except sqlite3.Error:
            logger.error("Error recording skill pattern %r", name, exc_info=True)
            return None
        return pattern.id

    def get_patterns(self, limit: int = 20) -> list[SkillPattern]:
        try:
            return self._storage.load_patterns(limit)
        except sqlite3.Error:
            logger.error("Error getting skill patterns", exc_info=True)
            return []

    # ── bulk loading ───────────────────────────────────────────────────

    def load_skills_from_markdown(self, markdown: str) -> list[str]:
        """Learn one automation skill per '## Name' section.

        Recognised lines inside a section:
            - **Trigger**: <description>
            - **Actions**:
              - <action>
        """
        learned = []
        for section in markdown.split("## ")[1:]:
            lines = section.split("\n")
            name = lines[0].strip()
            if not name:
                continue
            match = _TRIGGER.search(section)
            description = match.group(1) if match else f"Markdown skill: {name}"

            actions = []
            start = next((i for i, line in enumerate(lines)
                          if "- **Actions**:" in line), None)
            if start is not None:
                for line in lines[start + 1:]:
                    if line.startswith("  - "):
                        actions.append(line.replace("  - ", "", 1).strip())
                    elif not line.strip() or line.startswith("##"):
                        break

            if self.learn_skill(name, SkillCategory.AUTOMATION, description,
                                {"actions": actions, "source": "markdown"}):
                learned.append(name)
        return learned

    def initialize_base_skills(self) -> list[str]:
        """Seed the registry with the built-in skills. Safe to call twice."""
        return [
            skill["name"] for skill in BASE_SKILLS
            if self.learn_skill(skill["name"], skill["category"],
                                skill["description"], skill["knowledge"])
        ]
