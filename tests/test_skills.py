"""Tests for the skill registry."""

import os
import sqlite3
import tempfile
import threading
from unittest import mock

import pytest
from pydantic import ValidationError

from agent_cortex.models import SkillCategory, SkillKnowledge
from agent_cortex.skills import BASE_SKILLS, SkillRegistry
from agent_cortex.storage import Storage


@pytest.fixture
def storage():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    s = Storage(path)
    yield s
    s.close()
    os.unlink(path)


@pytest.fixture
def registry(storage):
    return SkillRegistry(storage)


# ── learn_skill ────────────────────────────────────────────────────────


class TestLearnSkill:
    def test_new_skill_defaults(self, registry):
        skill_id = registry.learn_skill("refactoring", "coding", "Clean up code", {"tips": 3})
        skill = registry.get_skill("refactoring")
        assert skill.id == skill_id
        assert skill.category == SkillCategory.CODING
        assert skill.usage_count == 0
        assert skill.success_rate == 0.0
        assert skill.proficiency_level == 1
        assert skill.last_used is None
        assert skill.knowledge == {"tips": 3}

    def test_merge_knowledge(self, registry):
        first = registry.learn_skill("s", SkillCategory.ANALYSIS, "d1", {"a": 1})
        second = registry.learn_skill("s", SkillCategory.ANALYSIS, "d2", {"b": 2})
        assert first == second
        skill = registry.get_skill("s")
        assert skill.knowledge == {"a": 1, "b": 2}
        assert skill.description == "d2"
        assert len(registry.get_all()) == 1

    def test_merge_new_keys_win_and_no_deep_merge(self, registry):
        registry.learn_skill("s", "coding", "d", {"cfg": {"x": 1, "y": 2}, "keep": True})
        registry.learn_skill("s", "coding", "d", {"cfg": {"x": 9}})
        assert registry.get_skill("s").knowledge == {"cfg": {"x": 9}, "keep": True}

    def test_merge_keeps_usage_stats(self, registry):
        registry.learn_skill("s", "coding", "d", {})
        registry.record_usage("s", True)
        registry.learn_skill("s", "coding", "d again", {"more": 1})
        assert registry.get_skill("s").usage_count == 1

    def test_invalid_knowledge_raises(self, registry):
        with pytest.raises(ValidationError):
            registry.learn_skill("bad", "coding", "d", {"": 1})
        with pytest.raises(ValidationError):
            registry.learn_skill("bad", "coding", "d", {"obj": object()})
        assert registry.get_skill("bad") is None

    def test_unknown_category_raises(self, registry):
        with pytest.raises(ValueError):
            registry.learn_skill("s", "cooking", "d", {})

    def test_storage_error_returns_none(self, registry, storage):
        with mock.patch.object(storage, "insert_skill",
                               side_effect=sqlite3.OperationalError("locked")):
            assert registry.learn_skill("s", "coding", "d", {}) is None


class TestSkillKnowledge:
    def test_merged_is_shallow(self):
        old = SkillKnowledge({"a": {"deep": 1}, "b": 2})
        assert old.merged({"a": {"other": 2}}).root == {"a": {"other": 2}, "b": 2}

    def test_empty_default(self):
        assert SkillKnowledge().root == {}


# ── record_usage ───────────────────────────────────────────────────────


class TestRecordUsage:
    def test_running_success_rate(self, registry):
        registry.learn_skill("deploy", "automation", "Ship it", {})
        for outcome in (True, True, True, False):
            registry.record_usage("deploy", outcome)
        skill = registry.get_skill("deploy")
        assert skill.usage_count == 4
        assert skill.success_rate == 0.75
        assert skill.last_used is not None

    def test_returns_updated_skill(self, registry):
        registry.learn_skill("deploy", "automation", "Ship it", {})
        skill = registry.record_usage("deploy", False)
        assert skill.usage_count == 1
        assert skill.success_rate == 0.0

    def test_unknown_skill(self, registry):
        assert registry.record_usage("ghost", True) is None

    def test_unknown_names_leave_no_locks(self, registry):
        for i in range(1000):
            registry.record_usage(f"ghost-{i}", True)
        assert registry._locks == {}

    def test_proficiency_level_untouched(self, registry):
        registry.learn_skill("deploy", "automation", "Ship it", {})
        for _ in range(10):
            registry.record_usage("deploy", True)
        assert registry.get_skill("deploy").proficiency_level == 1

    def test_concurrent_usage_loses_nothing(self, registry):
        registry.learn_skill("hot", "coding", "Contended skill", {})
        threads_n, calls = 8, 25

        def worker(i):
            for j in range(calls):
                registry.record_usage("hot", (i + j) % 2 == 0)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        skill = registry.get_skill("hot")
        assert skill.usage_count == threads_n * calls
        assert registry._locks == {}
        assert skill.success_rate == pytest.approx(0.5)


# ── queries ────────────────────────────────────────────────────────────


class TestQueries:
    @pytest.fixture
    def populated(self, registry):
        registry.learn_skill("unit_testing", "coding", "Write pytest suites", {})
        registry.learn_skill("web_research", "research", "Search the web", {})
        registry.learn_skill("code_review", "coding", "Review pull requests", {})
        for _ in range(3):
            registry.record_usage("code_review", True)
        registry.record_usage("unit_testing", True)
        return registry

    def test_by_category_most_used_first(self, populated):
        names = [s.name for s in populated.get_by_category("coding")]
        assert names == ["code_review", "unit_testing"]

    def test_most_used(self, populated):
        assert [s.name for s in populated.get_most_used(2)] == ["code_review", "unit_testing"]

    def test_search_name_and_description(self, populated):
        assert [s.name for s in populated.search_skills("REVIEW")] == ["code_review"]
        assert [s.name for s in populated.search_skills("pytest")] == ["unit_testing"]
        assert populated.search_skills("nothing like this") == []

    def test_search_treats_wildcards_literally(self, populated):
        assert populated.search_skills("%") == []
        assert [s.name for s in populated.search_skills("web_")] == ["web_research"]

    def test_search_folds_non_ascii_case(self, registry):
        registry.learn_skill("Übersetzung", "communication", "Translate ÉMAILS", {})
        assert [s.name for s in registry.search_skills("übersetz")] == ["Übersetzung"]
        assert [s.name for s in registry.search_skills("émails")] == ["Übersetzung"]

    def test_get_all_ordered_by_category(self, populated):
        categories = [s.category.value for s in populated.get_all()]
        assert categories == sorted(categories)


# ── patterns and bulk loading ──────────────────────────────────────────


class TestPatterns:
    def test_record_and_list(self, registry):
        pattern_id = registry.record_pattern(
            "Skill: Build a login", "Generated from successful task",
            ["OPEN:editor", "WRITE:code", "SAVE"], trigger="Build a login form",
        )
        patterns = registry.get_patterns()
        assert patterns[0].id == pattern_id
        assert patterns[0].action_sequence == ["OPEN:editor", "WRITE:code", "SAVE"]
        assert patterns[0].usage_count == 1
        assert patterns[0].success_rate == 1.0


MARKDOWN = """# Skills

## deploy_app
- **Trigger**: When the user asks to ship the app
- **Actions**:
  - RUN:npm run build
  - RUN:npm run deploy

## tidy_desktop
- **Actions**:
  - CLOSE:all_windows
"""


class TestBulkLoading:
    def test_load_from_markdown(self, registry):
        assert registry.load_skills_from_markdown(MARKDOWN) == ["deploy_app", "tidy_desktop"]
        deploy = registry.get_skill("deploy_app")
        assert deploy.category == SkillCategory.AUTOMATION
        assert deploy.description == "When the user asks to ship the app"
        assert deploy.knowledge == {
            "actions": ["RUN:npm run build", "RUN:npm run deploy"],
            "source": "markdown",
        }
        tidy = registry.get_skill("tidy_desktop")
        assert tidy.description == "Markdown skill: tidy_desktop"
        assert tidy.knowledge["actions"] == ["CLOSE:all_windows"]

    def test_base_skills_are_idempotent(self, registry):
        registry.initialize_base_skills()
        registry.initialize_base_skills()
        assert sorted(s.name for s in registry.get_all()) == sorted(
            s["name"] for s in BASE_SKILLS
        )
