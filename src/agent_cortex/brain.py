"""AgentBrain: what do I know, what can I do, what should I do next.

Orchestrates the memory store, skill registry, knowledge graph and planner
for one user, and writes task outcomes back into them.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Literal

from pydantic import ValidationError

from agent_cortex.config import CortexSettings, get_settings
from agent_cortex.embeddings import lexical_embed, tokenize
from agent_cortex.graph import KnowledgeGraph
from agent_cortex.memory import MemoryStore
from agent_cortex.models import (
    Decision,
    Insight,
    KnowledgeNode,
    MemoryScope,
    SkillCategory,
    UniversalMemoryType,
    UserMemoryType,
)
from agent_cortex.planner import HierarchicalPlanner
from agent_cortex.reasoning import DECISION_MODE, Reasoner, ask, parse_decision
from agent_cortex.skills import SkillRegistry
from agent_cortex.storage import Storage
from agent_cortex.text import summarize_for_storage

logger = logging.getLogger(__name__)

Outcome = Literal["success", "failure"]

# Checked in this order; the first category sharing a word with the task wins.
APPROACHES: list[tuple[frozenset[str], str]] = [
    (frozenset({"code", "write", "program", "function", "script"}),
     "Use code execution capabilities. Write code, test it, and iterate."),
    (frozenset({"github", "repo", "pr", "commit", "branch"}),
     "Use GitHub integration. Check connection status first."),
    (frozenset({"search", "find", "browse", "web"}),
     "Use browser to search and gather information."),
    (frozenset({"remember", "recall", "history"}),
     "Search memories and past interactions."),
]
DEFAULT_APPROACH = "Analyze the task and execute step by step."

MEMORY_HITS = 5
CONTEXT_ITEMS = 3


@dataclass
class AgentContext:
    task: str
    user_id: str | None = None
    previous_actions: list[str] = field(default_factory=list)
    screen_state: dict[str, Any] | None = None


@dataclass
class KnowledgeMatch:
    """A graph node that matched the task, with its one-hop neighbours."""

    node: KnowledgeNode
    related: list[dict[str, str]] = field(default_factory=list)


@dataclass
class ThinkResult:
    relevant_memories: list[str] = field(default_factory=list)
    relevant_skills: list[str] = field(default_factory=list)
    relevant_knowledge_nodes: list[KnowledgeMatch] = field(default_factory=list)
    preferences: dict[str, Any] = field(default_factory=dict)
    suggested_approach: str = DEFAULT_APPROACH
    hierarchical_plan: list[str] | None = None


@dataclass
class TaskLearning:
    """Ids of what learn_from_task() wrote. None where nothing was written."""

    memory_id: str | None = None
    task_node_id: str | None = None
    pattern_id: str | None = None
    pattern_memory_id: str | None = None
    solution_node_id: str | None = None
    edge_id: str | None = None


def is_complex(task: str) -> bool:
    """Cheap gate in front of the planner."""
    return len(task) > 20 or len(task.split()) > 4


def suggest_approach(task: str) -> str:
    words = set(tokenize(task))
    for keywords, approach in APPROACHES:
        if words & keywords:
            return approach
    return DEFAULT_APPROACH


def render_context(thinking: ThinkResult, include_plan: bool = True) -> str:
    """Text block for prompts: top memories and skills, preferences, approach, plan."""
    context = ""
    if thinking.relevant_memories:
        context += "\nRelevant memories:\n" + "\n".join(
            thinking.relevant_memories[:CONTEXT_ITEMS])
    if thinking.relevant_skills:
        context += "\nRelevant skills:\n" + "\n".join(
            thinking.relevant_skills[:CONTEXT_ITEMS])
    if thinking.preferences:
        context += f"\nUser preferences: {json.dumps(thinking.preferences, default=str)}"
    context += f"\nSuggested approach: {thinking.suggested_approach}"
    if include_plan and thinking.hierarchical_plan:
        context += "\nHierarchical Plan (ToT):\n" + " → ".join(thinking.hierarchical_plan)
    return context


class AgentBrain:
    """The agent's cognitive core for one user.

    API:
        brain.think(task)                 — gather memories, skills, knowledge, plan
        brain.get_context_for_task(task)  — the same, rendered for a prompt
        brain.decide(task)                — ask the reasoner for the next action
        brain.learn(insights)             — keep insights in memory and graph
        brain.learn_from_task(...)        — record an outcome, distil patterns
    """

    def __init__(self, user_id: str,
                 memory: MemoryStore,
                 skills: SkillRegistry,
                 graph: KnowledgeGraph,
                 planner: HierarchicalPlanner | None = None,
                 reasoner: Reasoner | None = None,
                 max_workers: int = 5) -> None:
        self.user_id = user_id
        self.memory = memory
        self.user_memory = memory.scoped(user_id)
        self.skills = skills
        self.graph = graph
        self.reasoner = reasoner
        if planner is None and reasoner is not None:
            planner = HierarchicalPlanner(reasoner)
        self.planner = planner
        self._max_workers = max_workers
        self._owned_storage: Storage | None = None

    @classmethod
    def from_settings(cls, user_id: str, reasoner: Reasoner | None = None,
                      settings: CortexSettings | None = None) -> AgentBrain:
        """Build a brain and its services on a SQLite file. The brain owns the storage."""
        settings = settings or get_settings()
        storage = Storage(settings.db_path)
        memory = MemoryStore(
            storage,
            embed_fn=lexical_embed(settings.embedding_dims),
            match_threshold=settings.match_threshold,
        )
        planner = None
        if reasoner is not None:
            planner = HierarchicalPlanner(
                reasoner,
                max_depth=settings.planner_max_depth,
                branch_factor=settings.planner_branch_factor,
            )
        brain = cls(
            user_id,
            memory=memory,
            skills=SkillRegistry(storage),
            graph=KnowledgeGraph(storage),
            planner=planner,
            reasoner=reasoner,
            max_workers=settings.max_workers,
        )
        brain._owned_storage = storage
        return brain

    # ── think ──────────────────────────────────────────────────────────

    def think(self, context: AgentContext | str, plan: bool = True) -> ThinkResult:
        """Fan out to every store at once, join, then expand and plan."""
        if isinstance(context, str):
            context = AgentContext(task=context, user_id=self.user_id)
        task = context.task
        user_memory = self._user_memory_for(context.user_id)
        t0 = time.time()

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            universal_f = pool.submit(
                self.memory.search_memory, MemoryScope.UNIVERSAL, task, MEMORY_HITS)
            user_f = pool.submit(
                user_memory.search_memory, MemoryScope.USER, task, MEMORY_HITS)
            skills_f = pool.submit(self.skills.search_skills, task)
            prefs_f = pool.submit(user_memory.get_all_preferences)
            nodes_f = pool.submit(self.graph.search_graph, task)

            universal = universal_f.result()
            user = user_f.result()
            skills = skills_f.result()
            preferences = prefs_f.result()
            nodes = nodes_f.result()

        result = ThinkResult(
            relevant_memories=(
                [f"[Universal] {m.content}" for m in universal]
                + [f"[User] {m.content}" for m in user]
            ),
            relevant_skills=[
                f"{s.name}: {s.description} "
                f"(used {s.usage_count}x, {round(s.success_rate * 100)}% success)"
                for s in skills
            ],
            relevant_knowledge_nodes=[
                KnowledgeMatch(node=node, related=[
                    {"relation_type": r.relation_type, "related_name": r.node.name}
                    for r in self.graph.get_related_nodes(node.id)
                ])
                for node in nodes
            ],
            preferences=preferences,
            suggested_approach=suggest_approach(task),
        )

        if plan and self.planner is not None and is_complex(task):
            result.hierarchical_plan = self.planner.plan(
                task, context.screen_state or {}, render_context(result, include_plan=False),
            )

        logger.debug("think(%r): %d memories, %d skills, %d nodes in %.1f ms",
                     task, len(result.relevant_memories), len(result.relevant_skills),
                     len(result.relevant_knowledge_nodes), (time.time() - t0) * 1000)
        return result

    def _user_memory_for(self, user_id: str | None) -> MemoryStore:
        if not user_id or user_id == self.user_id:
            return self.user_memory
        return self.memory.scoped(user_id)

    def get_context_for_task(self, task: str, include_plan: bool = True) -> str:
        return render_context(self.think(task, plan=include_plan), include_plan)

    def decide(self, context: AgentContext | str) -> Decision | None:
        """One next action from the reasoner, informed by think(). None without a reasoner."""
        if self.reasoner is None:
            return None
        if isinstance(context, str):
            context = AgentContext(task=context, user_id=self.user_id)
        prompt = (
            f"Task: {context.task}\n"
            f"Previous actions: {', '.join(context.previous_actions) or 'none'}\n"
            f"{render_context(self.think(context))}\n\n"
            'Respond with JSON: {"action": "...", "rationale": "...", "confidence": 0.0}'
        )
        return parse_decision(ask(self.reasoner, prompt, {"mode": DECISION_MODE}))

    # ── learn ──────────────────────────────────────────────────────────

    def learn(self, insights: Iterable[Insight | dict[str, Any]]) -> list[str]:
        """Store insights in universal memory and the graph. Returns new node ids.

        Relations whose target node cannot be found are skipped.
        """
        node_ids = []
        for raw in insights:
            try:
                insight = raw if isinstance(raw, Insight) else Insight.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping invalid insight", exc_info=True)
                continue

            self.memory.add_memory(
                MemoryScope.UNIVERSAL,
                insight.memory_type,
                summarize_for_storage(insight.content, 500),
                insight.importance,
            )

            name = insight.entities[0] if insight.entities else insight.content[:50]
            node_id = self.graph.add_node(
                name, insight.type, insight.content,
                {"importance": insight.importance, "entities": insight.entities},
            )
            if node_id is None:
                continue
            node_ids.append(node_id)

            for rel in insight.relations or []:
                target = self.graph.find_node_by_name(rel.target)
                if target is not None:
                    self.graph.add_edge(node_id, target.id, rel.type)
        return node_ids

    def learn_from_task(self, task: str, actions: list[str], outcome: Outcome,
                        notes: str | None = None) -> TaskLearning:
        """Record a task outcome; successful multi-step tasks become patterns."""
        content = f"Task: {task}\nActions: {' → '.join(actions)}\nOutcome: {outcome}"
        if notes:
            content += f"\nNotes: {notes}"
        learned = TaskLearning()

        learned.memory_id = self.user_memory.add_memory(
            MemoryScope.USER,
            UserMemoryType.TASK_HISTORY,
            content,
            0.7 if outcome == "success" else 0.5,
            context={"task": task, "actions": actions, "outcome": outcome},
        )
        learned.task_node_id = self.graph.add_node(
            task, "task", content, {"outcome": outcome, "actions": actions},
        )

        if outcome == "success" and len(actions) > 2:
            pattern_name = f"Skill: {' '.join(task.split(' ')[:3])}"
            learned.pattern_id = self.skills.record_pattern(
                pattern_name,
                f"Generated from successful task: {task}",
                actions,
                trigger=task,
            )
            pattern_content = f'Successful pattern for "{task}": {" → ".join(actions)}'
            learned.pattern_memory_id = self.memory.add_memory(
                MemoryScope.UNIVERSAL, UniversalMemoryType.PATTERN, pattern_content, 0.6,
            )
            learned.solution_node_id = self.graph.add_node(
                pattern_name, "solution", pattern_content, {"actions": actions},
            )
            if learned.task_node_id and learned.solution_node_id:
                learned.edge_id = self.graph.add_edge(
                    learned.task_node_id, learned.solution_node_id, "solved_by",
                )
            logger.info("Learned pattern %r from task", pattern_name)
        return learned

    def learn_new_skill(self, name: str, category: SkillCategory | str,
                        description: str, examples: list[str],
                        best_practices: list[str]) -> str | None:
        return self.skills.learn_skill(name, category, description, {
            "examples": examples,
            "best_practices": best_practices,
            "learned_at": datetime.now(timezone.utc).isoformat(),
        })

    def record_skill_usage(self, name: str, success: bool) -> None:
        self.skills.record_usage(name, success)

    # ── preferences ────────────────────────────────────────────────────

    def remember_user_preference(self, key: str, value: Any,
                                 context: str | None = None) -> bool:
        return self.user_memory.set_preference(key, value, learned_from=context)

    def recall_user_preference(self, key: str) -> Any | None:
        return self.user_memory.get_preference(key)

    # ── stats ──────────────────────────────────────────────────────────

    def get_most_used_skills(self, limit: int = 10) -> list[dict[str, Any]]:
        return [
            {"name": s.name, "uses": s.usage_count, "success_rate": s.success_rate}
            for s in self.skills.get_most_used(limit)
        ]

    def get_agent_stats(self) -> dict[str, Any]:
        skills = self.skills.get_all()
        top = sorted(skills, key=lambda s: s.usage_count, reverse=True)
        return {
            "total_skills": len(skills),
            "total_memories": self.memory.count(MemoryScope.UNIVERSAL),
            "top_skills": [s.name for s in top[:5]],
            "recent_learnings": [
                m.content[:100] for m in self.memory.get_recent(MemoryScope.UNIVERSAL, 5)
            ],
        }

    # ── utilities ──────────────────────────────────────────────────────

    def close(self) -> None:
        if self._owned_storage is not None:
            self._owned_storage.close()
            self._owned_storage = None

    def __enter__(self) -> AgentBrain:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"AgentBrain(user_id={self.user_id!r})"
