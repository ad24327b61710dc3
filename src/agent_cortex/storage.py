"""SQLite storage. One file = one brain."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

from agent_cortex.embeddings import rank_by_similarity
from agent_cortex.models import (
    KnowledgeEdge,
    KnowledgeNode,
    MemoryRecord,
    MemoryScope,
    Preference,
    Skill,
    SkillCategory,
    SkillPattern,
    clamp,
)
from agent_cortex.text import compress_text, decompress_text


def _casefold(value: Any) -> str | None:
    return value.casefold() if isinstance(value, str) else None


class Storage:
    """SQLite backend. Zero config. Portable.

    A single connection shared by every service, guarded by a re-entrant
    lock so the brain's fan-out threads can use it.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = Path(path) if path != ":memory:" else path
        self.conn = sqlite3.connect(str(path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        # SQLite lower() and LIKE only fold ASCII
        self.conn.create_function("casefold", 1, _casefold, deterministic=True)
        if path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                scope TEXT NOT NULL,
                user_id TEXT,
                memory_type TEXT NOT NULL,
                content_compressed TEXT NOT NULL,
                context TEXT NOT NULL DEFAULT '{}',
                importance REAL NOT NULL DEFAULT 0.5,
                access_count INTEGER NOT NULL DEFAULT 0,
                embedding BLOB,
                created_at REAL NOT NULL,
                last_accessed REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_memories_scope
                ON memories(scope, user_id);
            CREATE INDEX IF NOT EXISTS idx_memories_importance
                ON memories(importance DESC);
            CREATE INDEX IF NOT EXISTS idx_memories_created
                ON memories(created_at DESC);

            CREATE TABLE IF NOT EXISTS preferences (
                user_id TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                confidence REAL NOT NULL DEFAULT 0.7,
                learned_from TEXT,
                updated_at REAL NOT NULL,
                PRIMARY KEY (user_id, key)
            );

            CREATE TABLE IF NOT EXISTS skills (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                category TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                knowledge TEXT NOT NULL DEFAULT '{}',
                usage_count INTEGER NOT NULL DEFAULT 0,
                success_rate REAL NOT NULL DEFAULT 0.0,
                proficiency_level INTEGER NOT NULL DEFAULT 1,
                last_used REAL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_skills_category
                ON skills(category);

            CREATE TABLE IF NOT EXISTS skill_patterns (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                action_sequence TEXT NOT NULL DEFAULT '[]',
                trigger_condition TEXT NOT NULL DEFAULT '',
                usage_count INTEGER NOT NULL DEFAULT 1,
                success_rate REAL NOT NULL DEFAULT 1.0,
                created_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS knowledge_nodes (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                node_type TEXT NOT NULL,
                content_compressed TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_nodes_name
                ON knowledge_nodes(name);

            CREATE TABLE IF NOT EXISTS knowledge_edges (
                id TEXT PRIMARY KEY,
                source_id TEXT NOT NULL REFERENCES knowledge_nodes(id),
                target_id TEXT NOT NULL REFERENCES knowledge_nodes(id),
                relation_type TEXT NOT NULL,
                weight REAL NOT NULL DEFAULT 1.0,
                created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_edges_source
                ON knowledge_edges(source_id);
        """)
        self.conn.commit()

    # ── Memories ───────────────────────────────────────────────────────

    def save_memory(self, mem: MemoryRecord) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT OR REPLACE INTO memories
                   (id, scope, user_id, memory_type, content_compressed,
                    context, importance, access_count, embedding,
                    created_at, last_accessed)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    mem.id, mem.scope.value, mem.user_id, mem.memory_type,
                    compress_text(mem.content), json.dumps(mem.context, default=str),
                    clamp(mem.importance), mem.access_count, mem.embedding,
                    mem.created_at, mem.last_accessed,
                ),
            )
            self.conn.commit()

    def load_memory(self, memory_id: str) -> MemoryRecord | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_memory(row)

    def _scope_filter(self, scope: MemoryScope,
                      user_id: str | None) -> tuple[str, list[Any]]:
        if scope is MemoryScope.USER:
            return "scope = ? AND user_id = ?", [scope.value, user_id]
        return "scope = ?", [scope.value]

    def match_memories(self, scope: MemoryScope, query_embedding: bytes,
                       threshold: float, limit: int,
                       user_id: str | None = None) -> list[tuple[float, MemoryRecord]]:
        """Nearest-neighbor query: memories whose cosine similarity to the
        query exceeds threshold, best first.

        Brute-force scan over the scope. Raises ValueError if stored
        vectors have a different dimension than the query.
        """
        where, params = self._scope_filter(scope, user_id)
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM memories WHERE {where} AND embedding IS NOT NULL",
                params,
            ).fetchall()
        ranked = rank_by_similarity(
            query_embedding,
            ((row["embedding"], row) for row in rows),
            threshold=threshold,
            limit=limit,
        )
        return [(sim, self._row_to_memory(row)) for sim, row in ranked]

    def memories_ordered(self, scope: MemoryScope, order_by: str, limit: int,
                         user_id: str | None = None,
                         memory_type: str | None = None) -> list[MemoryRecord]:
        """Select memories of a scope ordered by one column, descending."""
        if order_by not in ("importance", "created_at", "access_count"):
            raise ValueError(f"cannot order memories by {order_by!r}")
        where, params = self._scope_filter(scope, user_id)
        if memory_type is not None:
            where += " AND memory_type = ?"
            params.append(memory_type)
        params.append(limit)
        with self._lock:
            rows = self.conn.execute(
                f"""SELECT * FROM memories WHERE {where}
                    ORDER BY {order_by} DESC, rowid DESC LIMIT ?""",
                params,
            ).fetchall()
        return [self._row_to_memory(r) for r in rows]

    def touch_memory(self, memory_id: str) -> None:
        with self._lock:
            self.conn.execute(
                """UPDATE memories
                   SET access_count = access_count + 1, last_accessed = ?
                   WHERE id = ?""",
                (time.time(), memory_id),
            )
            self.conn.commit()

    def delete_memory(self, memory_id: str, user_id: str) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM memories WHERE id = ? AND scope = ? AND user_id = ?",
                (memory_id, MemoryScope.USER.value, user_id),
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def count_memories(self, scope: MemoryScope,
                       user_id: str | None = None) -> int:
        where, params = self._scope_filter(scope, user_id)
        with self._lock:
            return self.conn.execute(
                f"SELECT COUNT(*) FROM memories WHERE {where}", params
            ).fetchone()[0]

    # ── Preferences ────────────────────────────────────────────────────

    def save_preference(self, pref: Preference) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT INTO preferences
                   (user_id, key, value, confidence, learned_from, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(user_id, key) DO UPDATE SET
                       value = excluded.value,
                       confidence = excluded.confidence,
                       learned_from = excluded.learned_from,
                       updated_at = excluded.updated_at""",
                (
                    pref.user_id, pref.key, json.dumps({"value": pref.value}),
                    pref.confidence, pref.learned_from, pref.updated_at,
                ),
            )
            self.conn.commit()

    def load_preference(self, user_id: str, key: str) -> Preference | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM preferences WHERE user_id = ? AND key = ?",
                (user_id, key),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_preference(row)

    def all_preferences(self, user_id: str) -> list[Preference]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM preferences WHERE user_id = ? ORDER BY key",
                (user_id,),
            ).fetchall()
        return [self._row_to_preference(r) for r in rows]

    # ── Skills ─────────────────────────────────────────────────────────

    def load_skill(self, name: str) -> Skill | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM skills WHERE name = ?", (name,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_skill(row)

    def insert_skill(self, skill: Skill) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT INTO skills
                   (id, name, category, description, knowledge, usage_count,
                    success_rate, proficiency_level, last_used,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    skill.id, skill.name, skill.category.value,
                    skill.description, json.dumps(skill.knowledge),
                    skill.usage_count, clamp(skill.success_rate),
                    skill.proficiency_level, skill.last_used,
                    skill.created_at, skill.updated_at,
                ),
            )
            self.conn.commit()

    def update_skill_definition(self, name: str, description: str,
                                knowledge: dict[str, Any]) -> None:
        with self._lock:
            self.conn.execute(
                """UPDATE skills SET description = ?, knowledge = ?, updated_at = ?
                   WHERE name = ?""",
                (description, json.dumps(knowledge), time.time(), name),
            )
            self.conn.commit()

    def update_skill_usage(self, name: str, success: bool) -> Skill | None:
        """Read-modify-write of (usage_count, success_rate) in one transaction."""
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT usage_count, success_rate FROM skills WHERE name = ?",
                    (name,),
                ).fetchone()
                if row is None:
                    return None
                n = (row["usage_count"] or 0) + 1
                rate = ((row["success_rate"] or 0.0) * (n - 1) + (1 if success else 0)) / n
                now = time.time()
                self.conn.execute(
                    """UPDATE skills
                       SET usage_count = ?, success_rate = ?, last_used = ?,
                           updated_at = ?
                       WHERE name = ?""",
                    (n, clamp(rate), now, now, name),
                )
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise
            return self.load_skill(name)

    def skills_by_category(self, category: SkillCategory) -> list[Skill]:
        with self._lock:
            rows = self.conn.execute(
                """SELECT * FROM skills WHERE category = ?
                   ORDER BY usage_count DESC, name""",
                (category.value,),
            ).fetchall()
        return [self._row_to_skill(r) for r in rows]

    def most_used_skills(self, limit: int = 10) -> list[Skill]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM skills ORDER BY usage_count DESC, name LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_skill(r) for r in rows]

    def search_skills(self, query: str, limit: int = 10) -> list[Skill]:
        with self._lock:
            rows = self.conn.execute(
                """SELECT * FROM skills
                   WHERE instr(casefold(name), casefold(?)) > 0
                      OR instr(casefold(description), casefold(?)) > 0
                   ORDER BY usage_count DESC, name LIMIT ?""",
                (query, query, limit),
            ).fetchall()
        return [self._row_to_skill(r) for r in rows]

    def all_skills(self) -> list[Skill]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM skills ORDER BY category ASC, name ASC"
            ).fetchall()
        return [self._row_to_skill(r) for r in rows]

    def save_pattern(self, pattern: SkillPattern) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT INTO skill_patterns
                   (id, name, description, action_sequence, trigger_condition,
                    usage_count, success_rate, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    pattern.id, pattern.name, pattern.description,
                    json.dumps(pattern.action_sequence), pattern.trigger,
                    pattern.usage_count, pattern.success_rate,
                    pattern.created_at,
                ),
            )
            self.conn.commit()

    def load_patterns(self, limit: int = 20) -> list[SkillPattern]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM skill_patterns ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_pattern(r) for r in rows]

    # ── Knowledge graph ────────────────────────────────────────────────

    def save_node(self, node: KnowledgeNode) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT INTO knowledge_nodes
                   (id, name, node_type, content_compressed, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    node.id, node.name, node.node_type,
                    compress_text(node.content), json.dumps(node.metadata, default=str),
                    node.created_at,
                ),
            )
            self.conn.commit()

    def load_node(self, node_id: str) -> KnowledgeNode | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM knowledge_nodes WHERE id = ?", (node_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_node(row)

    def save_edge(self, edge: KnowledgeEdge) -> bool:
        """Insert an edge if both endpoints exist. Returns False otherwise."""
        with self._lock:
            found = self.conn.execute(
                "SELECT COUNT(DISTINCT id) FROM knowledge_nodes WHERE id IN (?, ?)",
                (edge.source_id, edge.target_id),
            ).fetchone()[0]
            expected = 1 if edge.source_id == edge.target_id else 2
            if found != expected:
                return False
            self.conn.execute(
                """INSERT INTO knowledge_edges
                   (id, source_id, target_id, relation_type, weight, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    edge.id, edge.source_id, edge.target_id,
                    edge.relation_type, edge.weight, edge.created_at,
                ),
            )
            self.conn.commit()
        return True

    def find_node_by_name(self, name: str) -> KnowledgeNode | None:
        with self._lock:
            row = self.conn.execute(
                """SELECT * FROM knowledge_nodes WHERE casefold(name) = casefold(?)
                   ORDER BY created_at, rowid LIMIT 1""",
                (name,),
            ).fetchone()
            if row is None:
                row = self.conn.execute(
                    """SELECT * FROM knowledge_nodes
                       WHERE instr(casefold(name), casefold(?)) > 0
                       ORDER BY created_at, rowid LIMIT 1""",
                    (name,),
                ).fetchone()
        if row is None:
            return None
        return self._row_to_node(row)

    def outgoing_edges(self, node_id: str) -> list[tuple[KnowledgeEdge, KnowledgeNode]]:
        with self._lock:
            rows = self.conn.execute(
                """SELECT e.id AS edge_id, e.source_id, e.target_id,
                          e.relation_type, e.weight, e.created_at AS edge_created_at,
                          n.*
                   FROM knowledge_edges e
                   JOIN knowledge_nodes n ON n.id = e.target_id
                   WHERE e.source_id = ?
                   ORDER BY e.created_at, e.rowid""",
                (node_id,),
            ).fetchall()
        result = []
        for row in rows:
            edge = KnowledgeEdge(
                id=row["edge_id"],
                source_id=row["source_id"],
                target_id=row["target_id"],
                relation_type=row["relation_type"],
                weight=row["weight"],
                created_at=row["edge_created_at"],
            )
            result.append((edge, self._row_to_node(row)))
        return result

    def search_nodes(self, query: str, limit: int = 10) -> list[KnowledgeNode]:
        with self._lock:
            rows = self.conn.execute(
                """SELECT * FROM knowledge_nodes
                   WHERE instr(casefold(name), casefold(?)) > 0
                      OR instr(casefold(json_extract(metadata, '$.summary')), casefold(?)) > 0
                   ORDER BY created_at, rowid LIMIT ?""",
                (query, query, limit),
            ).fetchall()
        return [self._row_to_node(r) for r in rows]

    def count_nodes(self) -> int:
        with self._lock:
            return self.conn.execute(
                "SELECT COUNT(*) FROM knowledge_nodes"
            ).fetchone()[0]

    def count_edges(self) -> int:
        with self._lock:
            return self.conn.execute(
                "SELECT COUNT(*) FROM knowledge_edges"
            ).fetchone()[0]

    # ── Close ──────────────────────────────────────────────────────────

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # ── Row mappers ────────────────────────────────────────────────────

    @staticmethod
    def _row_to_memory(row: sqlite3.Row) -> MemoryRecord:
        return MemoryRecord(
            id=row["id"],
            scope=MemoryScope(row["scope"]),
            user_id=row["user_id"],
            memory_type=row["memory_type"],
            content=decompress_text(row["content_compressed"]),
            context=json.loads(row["context"]),
            importance=row["importance"],
            access_count=row["access_count"],
            embedding=row["embedding"],
            created_at=row["created_at"],
            last_accessed=row["last_accessed"],
        )

    @staticmethod
    def _row_to_preference(row: sqlite3.Row) -> Preference:
        return Preference(
            user_id=row["user_id"],
            key=row["key"],
            value=json.loads(row["value"]).get("value"),
            confidence=row["confidence"],
            learned_from=row["learned_from"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_skill(row: sqlite3.Row) -> Skill:
        return Skill(
            id=row["id"],
            name=row["name"],
            category=SkillCategory(row["category"]),
            description=row["description"],
            knowledge=json.loads(row["knowledge"]),
            usage_count=row["usage_count"],
            success_rate=row["success_rate"],
            proficiency_level=row["proficiency_level"],
            last_used=row["last_used"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_pattern(row: sqlite3.Row) -> SkillPattern:
        return SkillPattern(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            action_sequence=json.loads(row["action_sequence"]),
            trigger=row["trigger_condition"],
            usage_count=row["usage_count"],
            success_rate=row["success_rate"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> KnowledgeNode:
        return KnowledgeNode(
            id=row["id"],
            name=row["name"],
            node_type=row["node_type"],
            content=decompress_text(row["content_compressed"]),
            metadata=json.loads(row["metadata"]),
            created_at=row["created_at"],
        )
