"""
Knowledge Graph Store

Persists one knowledge-graph blob per session key using Supabase.
Falls back to an in-memory dict when no client is configured or the
database is unreachable. The in-memory session state stays authoritative:
a failed write is logged and otherwise ignored.
"""

import json
import logging
from typing import Any, Dict, Optional

from socratic_calculus_tutor import knowledge_graph as kg
from socratic_calculus_tutor.config import KNOWLEDGE_GRAPH_TABLE
from socratic_calculus_tutor.errors import PersistenceFailure
from socratic_calculus_tutor.knowledge_graph import KnowledgeGraph

logger = logging.getLogger(__name__)


class KnowledgeGraphStore:
    """
    Read/write a serialized KnowledgeGraph keyed by session id.

    Table layout: knowledge_graphs(session_id text primary key, graph jsonb)
    """

    def __init__(self, supabase_client=None, table: str = KNOWLEDGE_GRAPH_TABLE):
        """
        Initialize KnowledgeGraphStore.

        Args:
            supabase_client: Supabase client instance (optional)
            table: Table holding the blobs
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self.table = table

        # Always initialize in-memory fallback (used in error cases)
        self._in_memory: Dict[str, str] = {}

    # ---------- raw blob access ----------

    def _read_memory(self, session_id: str) -> Optional[Any]:
        raw = self._in_memory.get(session_id)
        return json.loads(raw) if raw is not None else None

    def _read_blob(self, session_id: str) -> Optional[Any]:
        if not self.use_supabase:
            return self._read_memory(session_id)

        try:
            result = self.supabase.table(self.table).select("graph").eq("session_id", session_id).execute()
        except Exception as e:
            raise PersistenceFailure(f"load failed for {session_id}: {e}") from e

        if result.data:
            graph = result.data[0].get("graph")
            # jsonb comes back decoded, text columns do not
            return json.loads(graph) if isinstance(graph, str) else graph

        return self._read_memory(session_id)

    def _write_blob(self, session_id: str, blob: Dict[str, Any]):
        encoded = json.dumps(blob)
        if not self.use_supabase:
            self._in_memory[session_id] = encoded
            return

        try:
            self.supabase.table(self.table).upsert(
                {"session_id": session_id, "graph": blob},
                on_conflict="session_id",
            ).execute()
        except Exception as e:
            self._in_memory[session_id] = encoded
            raise PersistenceFailure(f"save failed for {session_id}: {e}") from e

    # ---------- public API ----------

    async def load(self, session_id: str) -> KnowledgeGraph:
        """
        Load the stored graph.

        Returns:
            The stored graph, or an empty one when absent, unreadable or corrupt
        """
        try:
            try:
                blob = self._read_blob(session_id)
            except PersistenceFailure as e:
                logger.warning(f"⚠️ [KnowledgeStore] {e}, using in-memory copy")
                blob = self._read_memory(session_id)
        except ValueError as e:
            logger.warning(f"⚠️ [KnowledgeStore] Could not decode graph for {session_id}: {e}")
            return kg.create_empty()

        if blob is None:
            return kg.create_empty()

        try:
            graph = kg.from_dict(blob)
        except ValueError as e:
            logger.warning(f"⚠️ [KnowledgeStore] Discarding corrupt graph for {session_id}: {e}")
            return kg.create_empty()

        logger.info(
            f"✅ [KnowledgeStore] Loaded graph for {session_id} "
            f"({len(graph.topics)} topics, {len(graph.error_history)} errors)"
        )
        return graph

    async def save(self, session_id: str, graph: KnowledgeGraph) -> bool:
        """
        Persist the graph.

        Returns:
            True if saved to the primary store, False if it fell back to memory
        """
        try:
            self._write_blob(session_id, kg.to_dict(graph))
            return True
        except PersistenceFailure as e:
            logger.warning(f"⚠️ [KnowledgeStore] {e} (kept in memory)")
            return False

    async def clear(self, session_id: str) -> bool:
        """Delete the stored graph for a session."""
        existed = self._in_memory.pop(session_id, None) is not None
        if not self.use_supabase:
            return existed

        try:
            self.supabase.table(self.table).delete().eq("session_id", session_id).execute()
            return True
        except Exception as e:
            logger.warning(f"⚠️ [KnowledgeStore] Error deleting graph for {session_id}: {e}")
            return False
