"""agent-cortex: memory, skills, knowledge graph and planning for an AI agent."""

from agent_cortex.brain import AgentBrain, AgentContext, ThinkResult
from agent_cortex.config import CortexSettings
from agent_cortex.embeddings import cosine_similarity, lexical_embed
from agent_cortex.graph import KnowledgeGraph
from agent_cortex.memory import MemoryStore
from agent_cortex.models import (
    Insight, MemoryScope, SkillCategory, UniversalMemoryType, UserMemoryType,
)
from agent_cortex.planner import HierarchicalPlanner
from agent_cortex.reasoning import Reasoner
from agent_cortex.skills import SkillRegistry
from agent_cortex.storage import Storage

__version__ = "0.1.0"
__all__ = [
    "AgentBrain", "AgentContext", "ThinkResult", "CortexSettings",
    "MemoryStore", "SkillRegistry", "KnowledgeGraph", "HierarchicalPlanner",
    "Storage", "Reasoner", "Insight", "MemoryScope", "SkillCategory",
    "UniversalMemoryType", "UserMemoryType", "lexical_embed", "cosine_similarity",
]
