"""Hierarchical planning: a bounded beam search over thoughts.

Each level asks the reasoner for next steps from every retained thought,
pools all children and keeps the best branch_factor of them globally. The
plan is the greedy best-child walk from the root.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from agent_cortex.models import ThoughtNode
from agent_cortex.reasoning import CANDIDATES_MODE, Reasoner, ask, parse_candidates

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3
DEFAULT_BRANCH_FACTOR = 3


class HierarchicalPlanner:
    def __init__(self, reasoner: Reasoner,
                 max_depth: int = DEFAULT_MAX_DEPTH,
                 branch_factor: int = DEFAULT_BRANCH_FACTOR) -> None:
        if max_depth < 1 or branch_factor < 1:
            raise ValueError("max_depth and branch_factor must be positive")
        self._reasoner = reasoner
        self.max_depth = max_depth
        self.branch_factor = branch_factor

    def plan(self, task: str, state: Any = None, context: str = "") -> list[str]:
        """Return the best sequence of thoughts for task, root excluded.

        At most max_depth sequential rounds of reasoning; [] when the first
        round produces nothing.
        """
        root = ThoughtNode(thought=task, score=1.0, depth=0)
        retained = [root]
        logger.debug("Planning %r (depth=%d, beam=%d)",
                     task, self.max_depth, self.branch_factor)

        with ThreadPoolExecutor(max_workers=self.branch_factor) as pool:
            for depth in range(1, self.max_depth + 1):
                branches = list(pool.map(
                    lambda node: self._branches(node, task, state, context),
                    retained,
                ))
                pooled: list[ThoughtNode] = []
                for node, children in zip(retained, branches):
                    node.children = children
                    pooled.extend(children)

                # stable sort: equal scores keep generation order
                pooled.sort(key=lambda n: n.score, reverse=True)
                retained = pooled[:self.branch_factor]
                if not retained:
                    logger.debug("No candidates at depth %d, stopping", depth)
                    break

        return self.best_path(root)

    def _branches(self, node: ThoughtNode, task: str, state: Any,
                  context: str) -> list[ThoughtNode]:
        response = ask(
            self._reasoner,
            self._prompt(node, task, state, context),
            {"mode": CANDIDATES_MODE, "count": self.branch_factor},
        )
        return [
            ThoughtNode(
                id=f"{node.id}-{i}",
                thought=thought,
                score=score,
                depth=node.depth + 1,
                parent_id=node.id,
            )
            for i, (thought, score) in enumerate(
                parse_candidates(response, self.branch_factor)
            )
        ]

    def _prompt(self, node: ThoughtNode, task: str, state: Any,
                context: str) -> str:
        try:
            rendered_state = json.dumps(state if state is not None else {}, default=str)
        except (TypeError, ValueError):
            rendered_state = str(state)
        return (
            f"Task: {task}\n"
            f"Current Node Thought: {node.thought}\n"
            f"Context: {context}\n"
            f"State: {rendered_state}\n\n"
            f"Generate {self.branch_factor} distinct possible next steps or "
            f"strategies to achieve the task.\n"
            f"For each strategy, provide a brief thought and a feasibility "
            f"score (0.0 to 1.0).\n"
            f"Format: Thought | Score"
        )

    @staticmethod
    def best_path(root: ThoughtNode) -> list[str]:
        """Follow the highest-scoring child until a leaf. Ties go to the first child."""
        path = []
        current = root
        while current.children:
            best = current.children[0]
            for child in current.children[1:]:
                if child.score > best.score:
                    best = child
            path.append(best.thought)
            current = best
        return path
