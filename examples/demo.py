#!/usr/bin/env python3
"""
agent-cortex demo: think, act, learn, think again.

No LLM needed. A scripted reasoner stands in for the model.
"""

import os
import tempfile

from agent_cortex import AgentBrain, AgentContext, CortexSettings


class ScriptedReasoner:
    """Proposes fixed steps for the planner and always clicks submit."""

    STEPS = [
        ("Open the editor and create login.html", 0.9),
        ("Write the form markup with email and password", 0.8),
        ("Preview the page in the browser", 0.6),
    ]

    def complete(self, prompt, options=None):
        if options["mode"] == "decision":
            return {"action": "CLICK:submit", "rationale": "the form is complete",
                    "confidence": 0.85}
        return "\n".join(f"{thought} | {score}" for thought, score in self.STEPS)


def header(text):
    print(f"\n{'='*64}")
    print(f"  {text}")
    print(f"{'='*64}\n")


def show(thinking):
    for line in thinking.relevant_memories:
        print(f"    memory   {line[:70]}")
    for line in thinking.relevant_skills:
        print(f"    skill    {line}")
    for match in thinking.relevant_knowledge_nodes:
        related = ", ".join(f"{r['relation_type']} → {r['related_name']}" for r in match.related)
        print(f"    node     {match.node.name}" + (f"  ({related})" if related else ""))
    if thinking.preferences:
        print(f"    prefs    {thinking.preferences}")
    print(f"    approach {thinking.suggested_approach}")
    if thinking.hierarchical_plan:
        print("    plan     " + "\n             ".join(thinking.hierarchical_plan))
    print()


def main():
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    settings = CortexSettings(db_path=db_path, planner_max_depth=2)
    brain = AgentBrain.from_settings("carlos", ScriptedReasoner(), settings)
    task = "Write code for a login form page"

    header("AGENT-CORTEX: Learning Loop Demo")

    brain.skills.initialize_base_skills()
    brain.remember_user_preference("stack", "plain html", "first chat")
    brain.learn([
        {"type": "fact", "content": "Login forms need a password input with autocomplete.",
         "entities": ["login form"], "importance": 0.8},
    ])

    # ── Before ─────────────────────────────────────────────────────────

    header("BEFORE — what the agent knows about the task")
    show(brain.think(task))

    decision = brain.decide(AgentContext(task=task, previous_actions=["TYPE:email"]))
    print(f"  DECISION: {decision.action} ({decision.confidence:.0%}): {decision.rationale}\n")

    # ── Act and learn ──────────────────────────────────────────────────

    header("LEARN — the task succeeded")

    actions = ["OPEN:editor", "WRITE:login.html", "RUN:preview", "CLICK:submit"]
    learned = brain.learn_from_task(task, actions, "success")
    brain.record_skill_usage("code_execution", True)
    print(f"  task node      {learned.task_node_id}")
    print(f"  solution node  {learned.solution_node_id}")
    print(f"  pattern        {learned.pattern_id}\n")

    # ── After ──────────────────────────────────────────────────────────

    header("AFTER — the same task, with experience")
    show(brain.think(task))

    stats = brain.get_agent_stats()
    print(f"  STATS: {stats['total_skills']} skills, {stats['total_memories']} shared memories")
    print(f"  TOP SKILLS: {stats['top_skills'][:3]}\n")

    brain.close()
    os.unlink(db_path)


if __name__ == "__main__":
    main()
