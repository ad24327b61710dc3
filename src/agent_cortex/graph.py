"""Knowledge graph. Append-only typed nodes and weighted directed edges."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from agent_cortex.models import KnowledgeEdge, KnowledgeNode, RelatedNode
from agent_cortex.storage import Storage

logger = logging.getLogger(__name__)


class KnowledgeGraph:
    """Entities and their relations. Nodes and edges are never updated or removed."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def add_node(self, name: str, type: str, content: str,
                 metadata: dict[str, Any] | None = None) -> str | None:
        node = KnowledgeNode(
            name=name,
            node_type=type,
            content=content,
            metadata=metadata or {},
        )
        try:
            self._storage.save_node(node)
        except (sqlite3.Error, TypeError, ValueError):
            logger.error("Error adding knowledge node %r", name, exc_info=True)
            return None
        return node.id

    def add_edge(self, source_id: str, target_id: str, relation_type: str,
                 weight: float = 1.0) -> str | None:
        """Link two existing nodes. None, and no change, if either is missing."""
        edge = KnowledgeEdge(
            source_id=source_id,
            target_id=target_id,
            relation_type=relation_type,
            weight=weight,
        )
        try:
            saved = self._storage.save_edge(edge)
        except sqlite3.Error:
            logger.error("Error adding knowledge edge %s -[%s]-> %s",
                         source_id, relation_type, target_id, exc_info=True)
            return None
        if not saved:
            logger.warning("Rejected edge %s -[%s]-> %s: missing endpoint",
                           source_id, relation_type, target_id)
            return None
        return edge.id

    def get_node(self, node_id: str) -> KnowledgeNode | None:
        try:
            return self._storage.load_node(node_id)
        except sqlite3.Error:
            logger.error("Error loading knowledge node %s", node_id, exc_info=True)
            return None

    def find_node_by_name(self, name: str) -> KnowledgeNode | None:
        """Case-insensitive: an exact name wins, otherwise the first containing match."""
        try:
            return self._storage.find_node_by_name(name)
        except sqlite3.Error:
            logger.error("Error finding knowledge node %r", name, exc_info=True)
            return None

    def get_related_nodes(self, node_id: str) -> list[RelatedNode]:
        """Targets of the node's outgoing edges."""
        try:
            pairs = self._storage.outgoing_edges(node_id)
        except sqlite3.Error:
            logger.error("Error getting related nodes for %s", node_id, exc_info=True)
            return []
        return [
            RelatedNode(relation_type=edge.relation_type, weight=edge.weight, node=node)
            for edge, node in pairs
        ]

    def search_graph(self, query: str, limit: int = 10) -> list[KnowledgeNode]:
        """Substring match over node names and metadata summaries."""
        try:
            return self._storage.search_nodes(query, limit)
        except sqlite3.Error:
            logger.error("Error searching knowledge graph", exc_info=True)
            return []

    def node_count(self) -> int:
        try:
            return self._storage.count_nodes()
        except sqlite3.Error:
            logger.error("Error counting knowledge nodes", exc_info=True)
            return 0

    def edge_count(self) -> int:
        try:
            return self._storage.count_edges()
        except sqlite3.Error:
            logger.error("Error counting knowledge edges", exc_info=True)
            return 0
