"""Memory store: universal and per-user memories, preferences.

Retrieval is best-effort. Storage errors on reads degrade to a keyword scan
or an empty result; errors on writes come back as None/False. Nothing here
raises to the caller because of the database.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any

from agent_cortex.embeddings import DEFAULT_DIMS, EmbedFn, lexical_embed
from agent_cortex.models import (
    MemoryHit,
    MemoryRecord,
    MemoryScope,
    Preference,
    UniversalMemoryType,
    UserMemoryType,
    clamp,
)
from agent_cortex.storage import Storage

logger = logging.getLogger(__name__)

# Hashed lexical vectors are sparse; 0.1 already means shared words.
DEFAULT_MATCH_THRESHOLD = 0.1

# The keyword fallback scans this many rows per requested result.
FALLBACK_SCAN_FACTOR = 3
DEFAULT_IMPORTANCE = 0.5

_TYPES = {
    MemoryScope.UNIVERSAL: {t.value for t in UniversalMemoryType},
    MemoryScope.USER: {t.value for t in UserMemoryType},
}


class MemoryStore:
    """Persistent memory shared by every user, plus private per-user memory.

    API:
        store.add_memory(scope, type, content)   — remember something
        store.search_memory(scope, query)        — what is relevant now
        store.get_recent(scope) / get_most_accessed(scope)
        store.set_preference(key, value)         — per-user preferences
        store.delete_memory(id)                  — user memories only
        store.scoped(user_id)                    — view bound to one user
    """

    def __init__(self, storage: Storage,
                 embed_fn: EmbedFn | None = None,
                 match_threshold: float = DEFAULT_MATCH_THRESHOLD,
                 default_user_id: str | None = None) -> None:
        self._storage = storage
        self._embed_fn = embed_fn or lexical_embed(DEFAULT_DIMS)
        self._match_threshold = match_threshold
        self._default_user_id = default_user_id

    # ── scoped ─────────────────────────────────────────────────────────

    def scoped(self, user_id: str) -> MemoryStore:
        """Same storage, user-scoped calls default to user_id."""
        return MemoryStore(
            self._storage,
            embed_fn=self._embed_fn,
            match_threshold=self._match_threshold,
            default_user_id=user_id,
        )

    @property
    def user_id(self) -> str | None:
        return self._default_user_id

    def _owner(self, scope: MemoryScope, user_id: str | None) -> str | None:
        if scope is not MemoryScope.USER:
            return None
        return user_id or self._default_user_id

    # ── write ──────────────────────────────────────────────────────────

    def add_memory(self, scope: MemoryScope | str,
                   type: UniversalMemoryType | UserMemoryType | str,
                   content: str,
                   importance: float = 0.5,
                   context: dict[str, Any] | None = None,
                   user_id: str | None = None) -> str | None:
        """Store a memory and return its id, or None if it could not be saved."""
        scope = MemoryScope(scope)
        memory_type = getattr(type, "value", type)
        if memory_type not in _TYPES[scope]:
            logger.warning("Unexpected %s memory type %r", scope.value, memory_type)

        owner = self._owner(scope, user_id)
        if scope is MemoryScope.USER and owner is None:
            logger.warning("User memory without a user id was not stored")
            return None

        content = str(content or "")
        try:
            importance = clamp(float(importance))
        except (TypeError, ValueError):
            importance = DEFAULT_IMPORTANCE

        try:
            mem = MemoryRecord(
                content=content,
                memory_type=memory_type,
                scope=scope,
                user_id=owner,
                context=(context or {}) if scope is MemoryScope.USER else {},
                importance=importance,
                embedding=self._embed_fn(content),
            )
            self._storage.save_memory(mem)
        except (sqlite3.Error, TypeError, ValueError):
            logger.error("Error adding %s memory", scope.value, exc_info=True)
            return None
        return mem.id

    # ── search ─────────────────────────────────────────────────────────

    def search_memory(self, scope: MemoryScope | str, query: str,
                      limit: int = 10,
                      user_id: str | None = None) -> list[MemoryHit]:
        """Similarity search, falling back to a keyword scan on failure.

        Every returned hit counts as an access.
        """
        scope = MemoryScope(scope)
        owner = self._owner(scope, user_id)
        if scope is MemoryScope.USER and owner is None:
            return []

        try:
            matches = self._storage.match_memories(
                scope,
                self._embed_fn(query),
                threshold=self._match_threshold,
                limit=limit,
                user_id=owner,
            )
            hits = [
                MemoryHit(
                    id=mem.id,
                    type=mem.memory_type,
                    content=mem.content,
                    importance=mem.importance,
                    similarity=sim,
                )
                for sim, mem in matches
            ]
        except (sqlite3.Error, ValueError):
            logger.warning("Similarity search failed for %s memory, "
                           "using keyword fallback", scope.value, exc_info=True)
            hits = self._fallback_search(scope, query, limit, owner)

        for hit in hits:
            self._record_access(hit.id)
        return hits

    def _fallback_search(self, scope: MemoryScope, query: str, limit: int,
                         owner: str | None) -> list[MemoryHit]:
        try:
            candidates = self._storage.memories_ordered(
                scope, "importance", limit * FALLBACK_SCAN_FACTOR, user_id=owner,
            )
        except sqlite3.Error:
            logger.error("Keyword fallback failed for %s memory",
                         scope.value, exc_info=True)
            return []

        query_lower = query.lower()
        hits = [
            MemoryHit(id=m.id, type=m.memory_type, content=m.content,
                      importance=m.importance)
            for m in candidates
            if query_lower in m.content.lower()
        ]
        return hits[:limit]

    def _record_access(self, memory_id: str) -> None:
        try:
            self._storage.touch_memory(memory_id)
        except sqlite3.Error:
            logger.debug("Could not record access to %s", memory_id, exc_info=True)

    # ── listings ───────────────────────────────────────────────────────

    def _ordered(self, scope: MemoryScope | str, order_by: str, limit: int,
                 user_id: str | None, memory_type: str | None = None) -> list[MemoryRecord]:
        scope = MemoryScope(scope)
        owner = self._owner(scope, user_id)
        if scope is MemoryScope.USER and owner is None:
            return []
        try:
            return self._storage.memories_ordered(
                scope, order_by, limit, user_id=owner, memory_type=memory_type,
            )
        except sqlite3.Error:
            logger.error("Error listing %s memories by %s",
                         scope.value, order_by, exc_info=True)
            return []

    def get_recent(self, scope: MemoryScope | str = MemoryScope.UNIVERSAL,
                   limit: int = 20, user_id: str | None = None) -> list[MemoryRecord]:
        """Newest first."""
        return self._ordered(scope, "created_at", limit, user_id)

    def get_most_accessed(self, scope: MemoryScope | str = MemoryScope.UNIVERSAL,
                          limit: int = 10, user_id: str | None = None) -> list[MemoryRecord]:
        return self._ordered(scope, "access_count", limit, user_id)

    def get_memories(self, type: UserMemoryType | str | None = None,
                     limit: int = 20, user_id: str | None = None) -> list[MemoryRecord]:
        """A user's memories by importance, optionally of one type."""
        memory_type = getattr(type, "value", type)
        return self._ordered(MemoryScope.USER, "importance", limit, user_id,
                             memory_type=memory_type)

    def count(self, scope: MemoryScope | str = MemoryScope.UNIVERSAL,
              user_id: str | None = None) -> int:
        scope = MemoryScope(scope)
        try:
            return self._storage.count_memories(scope, self._owner(scope, user_id))
        except sqlite3.Error:
            logger.error("Error counting %s memories", scope.value, exc_info=True)
            return 0

    # ── delete ─────────────────────────────────────────────────────────

    def delete_memory(self, memory_id: str, user_id: str | None = None) -> bool:
        """Hard delete of a user memory. Only the owner can delete it."""
        owner = self._owner(MemoryScope.USER, user_id)
        if owner is None:
            return False
        try:
            return self._storage.delete_memory(memory_id, owner)
        except sqlite3.Error:
            logger.error("Error deleting memory %s", memory_id, exc_info=True)
            return False

    # ── preferences ────────────────────────────────────────────────────

    def set_preference(self, key: str, value: Any,
                       learned_from: str | None = None,
                       user_id: str | None = None) -> bool:
        owner = self._owner(MemoryScope.USER, user_id)
        if owner is None:
            logger.warning("Preference %r without a user id was not stored", key)
            return False
        try:
            self._storage.save_preference(Preference(
                user_id=owner,
                key=key,
                value=value,
                learned_from=learned_from,
                updated_at=time.time(),
            ))
        except (sqlite3.Error, TypeError, ValueError):
            logger.error("Error setting preference %r", key, exc_info=True)
            return False
        return True

    def get_preference(self, key: str, user_id: str | None = None) -> Any | None:
        owner = self._owner(MemoryScope.USER, user_id)
        if owner is None:
            return None
        try:
            pref = self._storage.load_preference(owner, key)
        except sqlite3.Error:
            logger.error("Error getting preference %r", key, exc_info=True)
            return None
        return pref.value if pref is not None else None

    def get_all_preferences(self, user_id: str | None = None) -> dict[str, Any]:
        owner = self._owner(MemoryScope.USER, user_id)
        if owner is None:
            return {}
        try:
            prefs = self._storage.all_preferences(owner)
        except sqlite3.Error:
            logger.error("Error getting preferences", exc_info=True)
            return {}
        return {p.key: p.value for p in prefs}

    def __repr__(self) -> str:
        return f"MemoryStore(user_id={self._default_user_id!r})"
