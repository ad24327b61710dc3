"""Tests for the hierarchical (tree of thoughts) planner."""

import re
import threading

import pytest

from agent_cortex.models import ThoughtNode
from agent_cortex.planner import HierarchicalPlanner

_NODE = re.compile(r"^Current Node Thought: (.*)$", re.MULTILINE)


class TreeReasoner:
    """Answers from a fixed tree: thought -> [(child, score), ...]."""

    def __init__(self, tree):
        self.tree = tree
        self.asked = []
        self._lock = threading.Lock()

    def complete(self, prompt, options=None):
        assert options["mode"] == "candidates"
        thought = _NODE.search(prompt).group(1)
        with self._lock:
            self.asked.append(thought)
        return {"candidates": [
            {"thought": t, "score": s} for t, s in self.tree.get(thought, [])
        ]}


class ConstantReasoner:
    def __init__(self, response):
        self.response = response
        self.calls = 0
        self._lock = threading.Lock()

    def complete(self, prompt, options=None):
        with self._lock:
            self.calls += 1
        return self.response


class TestPlan:
    def test_no_candidates_is_empty_plan(self):
        reasoner = ConstantReasoner({"candidates": []})
        assert HierarchicalPlanner(reasoner).plan("task", {}, "") == []
        assert reasoner.calls == 1

    def test_malformed_response_is_empty_plan(self):
        assert HierarchicalPlanner(ConstantReasoner("¯\\_(ツ)_/¯")).plan("task") == []

    def test_failing_reasoner_is_empty_plan(self):
        class Broken:
            def complete(self, prompt, options=None):
                raise TimeoutError("slow model")

        assert HierarchicalPlanner(Broken()).plan("task") == []

    def test_bounded_beam(self):
        reasoner = ConstantReasoner({"candidates": [
            {"thought": "a", "score": 0.9},
            {"thought": "b", "score": 0.8},
            {"thought": "c", "score": 0.7},
            {"thought": "d", "score": 0.6},
        ]})
        plan = HierarchicalPlanner(reasoner, max_depth=3, branch_factor=3).plan("task")
        assert plan == ["a", "a", "a"]
        # 1 root call, then 3 retained nodes at each following level
        assert reasoner.calls == 1 + 3 + 3

    def test_global_beam_and_greedy_path(self):
        reasoner = TreeReasoner({
            "task": [("A", 0.9), ("B", 0.5), ("C", 0.4)],
            "A": [("A1", 0.95), ("A2", 0.94), ("A3", 0.93)],
            "B": [("B1", 0.99)],
            "C": [("C1", 0.1)],
        })
        plan = HierarchicalPlanner(reasoner).plan("task")
        assert plan == ["A", "A1"]
        # depth 3 expanded only the global top three of depth 2
        assert sorted(reasoner.asked[4:]) == ["A1", "A2", "B1"]
        assert len(reasoner.asked) == 7

    def test_stops_when_level_is_empty(self):
        reasoner = TreeReasoner({"task": [("only", 0.5)]})
        assert HierarchicalPlanner(reasoner, max_depth=5).plan("task") == ["only"]
        assert reasoner.asked == ["task", "only"]

    def test_ties_go_to_first_child(self):
        reasoner = TreeReasoner({"task": [("X", 0.5), ("Y", 0.5)]})
        assert HierarchicalPlanner(reasoner).plan("task") == ["X"]

    def test_max_depth_one(self):
        reasoner = TreeReasoner({"task": [("s1", 0.2), ("s2", 0.6)], "s2": [("deeper", 1.0)]})
        assert HierarchicalPlanner(reasoner, max_depth=1).plan("task") == ["s2"]
        assert reasoner.asked == ["task"]

    def test_prompt_carries_context_and_state(self):
        prompts = []

        class Recorder:
            def complete(self, prompt, options=None):
                prompts.append(prompt)
                return {}

        HierarchicalPlanner(Recorder()).plan("ship it", {"app": "editor"}, "ctx block")
        assert "Task: ship it" in prompts[0]
        assert "Context: ctx block" in prompts[0]
        assert '"app": "editor"' in prompts[0]

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            HierarchicalPlanner(ConstantReasoner({}), max_depth=0)


class TestBestPath:
    def test_leaf_root(self):
        assert HierarchicalPlanner.best_path(ThoughtNode("t", 1.0, 0)) == []

    def test_walks_highest_child(self):
        root = ThoughtNode("t", 1.0, 0)
        low = ThoughtNode("low", 0.1, 1)
        high = ThoughtNode("high", 0.9, 1)
        high.children = [ThoughtNode("leaf", 0.3, 2)]
        root.children = [low, high]
        assert HierarchicalPlanner.best_path(root) == ["high", "leaf"]
