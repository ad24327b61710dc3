"""Tests for parsing reasoning collaborator responses."""

import json

from agent_cortex.models import Decision
from agent_cortex.reasoning import (
    DEFAULT_CANDIDATE_SCORE,
    ask,
    parse_candidates,
    parse_decision,
)


class TestParseCandidates:
    def test_candidates_mapping(self):
        response = {"candidates": [
            {"thought": "Open the editor", "score": 0.9},
            {"thought": "Write the form", "score": "0.7"},
        ]}
        assert parse_candidates(response, 3) == [
            ("Open the editor", 0.9), ("Write the form", 0.7),
        ]

    def test_thoughts_key_and_json_text(self):
        response = json.dumps({"thoughts": [{"thought": "Plan", "score": 0.4}]})
        assert parse_candidates(response, 3) == [("Plan", 0.4)]

    def test_steps_get_default_score(self):
        response = {"steps": ["step 1", "step 2"], "thought": "reasoning"}
        assert parse_candidates(response, 3) == [
            ("step 1", DEFAULT_CANDIDATE_SCORE), ("step 2", DEFAULT_CANDIDATE_SCORE),
        ]

    def test_scored_lines(self):
        text = "1. Search the docs | 0.8\n- Ask the user | 0.3\nno score here"
        assert parse_candidates(text, 3) == [("Search the docs", 0.8), ("Ask the user", 0.3)]

    def test_limit(self):
        response = [{"thought": f"t{i}", "score": 0.5} for i in range(10)]
        assert len(parse_candidates(response, 3)) == 3

    def test_scores_clamped(self):
        response = [{"thought": "over", "score": 7}, {"thought": "under", "score": -1}]
        assert parse_candidates(response, 3) == [("over", 1.0), ("under", 0.0)]

    def test_bad_items_skipped(self):
        response = [
            {"thought": "", "score": 0.5},
            {"thought": "bad score", "score": "high"},
            42,
            {"thought": "good", "score": 0.6},
        ]
        assert parse_candidates(response, 3) == [("good", 0.6)]

    def test_garbage_is_empty(self):
        for response in (None, "", "not json at all", {}, {"candidates": "nope"}, 3.14):
            assert parse_candidates(response, 3) == []


class TestParseDecision:
    def test_decision(self):
        decision = parse_decision('{"action": "CLICK:submit", "rationale": "form ready", '
                                  '"confidence": 0.8}')
        assert decision == Decision(action="CLICK:submit", rationale="form ready",
                                    confidence=0.8)

    def test_missing_action(self):
        assert parse_decision({"rationale": "?"}) is None
        assert parse_decision("garbage") is None

    def test_bad_confidence(self):
        assert parse_decision({"action": "WAIT", "confidence": "very"}).confidence == 0.0


class TestAsk:
    def test_passes_options(self):
        class Echo:
            def complete(self, prompt, options=None):
                return {"prompt": prompt, "options": options}

        assert ask(Echo(), "hi", {"mode": "decision"}) == {
            "prompt": "hi", "options": {"mode": "decision"},
        }

    def test_failure_is_none(self):
        class Broken:
            def complete(self, prompt, options=None):
                raise RuntimeError("rate limited")

        assert ask(Broken(), "hi", {"mode": "candidates"}) is None
