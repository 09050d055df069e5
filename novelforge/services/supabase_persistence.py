"""
Supabase Persistence Service for NovelForge

Reads project, chapter and storyline rows for the agent tools, writes
storyline plans, and stores agent call / tool call traces.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from ..core.errors import UpstreamError
from ..models import TraceRecord

logger = logging.getLogger("novelforge.supabase")

ProjectKey = Union[int, str]

TABLE_PROJECTS = "projects"
TABLE_CHAPTERS = "chapters"
TABLE_STORYLINES = "storylines"
TABLE_AGENT_CALLS = "agent_calls"
TABLE_TOOL_CALLS = "agent_tool_calls"


class SupabasePersistenceService:
    """Service for project data and trace rows in Supabase."""

    def __init__(self, supabase_url: Optional[str] = None, supabase_key: Optional[str] = None, client: Any = None):
        """
        Initialize the Supabase persistence service.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase service role key
            client: Pre-built client, mainly for tests
        """
        self.supabase_url = supabase_url
        self.supabase_key = supabase_key
        self.client = client
        self._connected = client is not None

    async def connect(self) -> bool:
        """
        Connect to Supabase.

        Returns:
            True if connection successful, False otherwise
        """
        if self._connected:
            return True
        if not self.supabase_url or not self.supabase_key:
            return False

        try:
            from supabase import create_client
            self.client = create_client(self.supabase_url, self.supabase_key)
            self._connected = True
            return True
        except Exception as e:
            logger.warning(f"[connect] Failed to connect to Supabase: {e}")
            self._connected = False
            return False

    @property
    def is_connected(self) -> bool:
        return self._connected and self.client is not None

    def _table(self, name: str) -> Any:
        if not self.is_connected:
            raise UpstreamError("persistent_store", "Supabase not connected")
        return self.client.table(name)

    # ========================================================================
    # Project reads
    # ========================================================================

    async def get_project(self, project_id: ProjectKey) -> Optional[Dict[str, Any]]:
        try:
            result = self._table(TABLE_PROJECTS).select("*").eq("id", project_id).execute()
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e
        return result.data[0] if result.data else None

    async def get_project_status(self, project_id: ProjectKey) -> Dict[str, Any]:
        """Chapter count, word count and storyline counts per line type."""
        project = await self.get_project(project_id)
        try:
            chapters = (
                self._table(TABLE_CHAPTERS)
                .select("id, chapter_number, word_count, status")
                .eq("project_id", project_id)
                .execute()
            ).data or []
            storylines = (
                self._table(TABLE_STORYLINES)
                .select("id, line_type, status")
                .eq("project_id", project_id)
                .execute()
            ).data or []
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e

        line_counts: Dict[str, int] = {}
        for line in storylines:
            line_counts[line.get("line_type", "unknown")] = line_counts.get(line.get("line_type", "unknown"), 0) + 1

        return {
            "project_id": project_id,
            "title": (project or {}).get("title"),
            "status": (project or {}).get("status"),
            "chapter_count": len(chapters),
            "latest_chapter": max((c.get("chapter_number") or 0 for c in chapters), default=0),
            "word_count": sum(c.get("word_count") or 0 for c in chapters),
            "storylines": line_counts,
        }

    async def get_chapter(self, chapter_id: ProjectKey) -> Optional[Dict[str, Any]]:
        try:
            result = self._table(TABLE_CHAPTERS).select("*").eq("id", chapter_id).execute()
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e
        return result.data[0] if result.data else None

    async def get_chapter_by_number(self, project_id: ProjectKey, chapter_number: int) -> Optional[Dict[str, Any]]:
        try:
            result = (
                self._table(TABLE_CHAPTERS)
                .select("*")
                .eq("project_id", project_id)
                .eq("chapter_number", chapter_number)
                .execute()
            )
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e
        return result.data[0] if result.data else None

    async def get_recent_chapters(self, project_id: ProjectKey, limit: int = 5) -> List[Dict[str, Any]]:
        try:
            result = (
                self._table(TABLE_CHAPTERS)
                .select("*")
                .eq("project_id", project_id)
                .order("chapter_number", desc=True)
                .limit(limit)
                .execute()
            )
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e
        return list(reversed(result.data or []))

    # ========================================================================
    # Storylines
    # ========================================================================

    async def get_storylines(self, project_id: ProjectKey, line_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """All storylines of a project, or only one line type."""
        try:
            query = self._table(TABLE_STORYLINES).select("*").eq("project_id", project_id)
            if line_type:
                query = query.eq("line_type", line_type)
            result = query.execute()
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e
        return result.data or []

    async def create_storyline(
        self,
        project_id: ProjectKey,
        line_type: str,
        title: str,
        content: str,
        chapter_range: Optional[str] = None,
    ) -> Dict[str, Any]:
        data = {
            "project_id": project_id,
            "line_type": line_type,
            "title": title,
            "content": content,
            "chapter_range": chapter_range,
            "status": "planned",
        }
        try:
            result = self._table(TABLE_STORYLINES).insert(data).execute()
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e
        return result.data[0] if result.data else data

    async def update_storyline(self, storyline_id: ProjectKey, fields: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = self._table(TABLE_STORYLINES).update(fields).eq("id", storyline_id).execute()
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e
        if not result.data:
            return {"id": storyline_id, "updated": False}
        return {**result.data[0], "updated": True}

    # ========================================================================
    # Traces
    # ========================================================================

    async def store_trace(self, record: TraceRecord) -> bool:
        """Agent calls go to agent_calls, tool calls to agent_tool_calls."""
        if not self.is_connected:
            return False

        if record.tool_name is None:
            table = TABLE_AGENT_CALLS
            data = {
                "agent_key": record.agent_key,
                "project_id": record.project_id,
                "action": record.action,
                "instruction": record.instruction,
                "response": record.response,
                "input_tokens": record.input_tokens,
                "output_tokens": record.output_tokens,
                "model": record.model,
                "success": record.success,
                "error": record.error,
                "duration_ms": record.duration_ms,
                "created_at": record.timestamp.isoformat(),
            }
        else:
            table = TABLE_TOOL_CALLS
            data = {
                "agent_key": record.agent_key,
                "tool_name": record.tool_name,
                "project_id": record.project_id,
                "input_params": record.input_params,
                "output_result": record.output_result,
                "success": record.success,
                "error": record.error,
                "duration_ms": record.duration_ms,
                "created_at": record.timestamp.isoformat(),
            }

        self.client.table(table).insert(data).execute()
        return True

    async def get_tool_call_stats(self, agent_key: Optional[str] = None, limit: int = 1000) -> Dict[str, Any]:
        try:
            query = self._table(TABLE_TOOL_CALLS).select("tool_name, success, duration_ms")
            if agent_key:
                query = query.eq("agent_key", agent_key)
            rows = query.limit(limit).execute().data or []
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e

        by_tool: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            entry = by_tool.setdefault(row["tool_name"], {"calls": 0, "failed": 0, "total_ms": 0})
            entry["calls"] += 1
            entry["failed"] += 0 if row.get("success") else 1
            entry["total_ms"] += row.get("duration_ms") or 0
        for entry in by_tool.values():
            entry["avg_ms"] = entry["total_ms"] / entry["calls"]
        return {
            "total_calls": len(rows),
            "failed_calls": sum(e["failed"] for e in by_tool.values()),
            "by_tool": by_tool,
        }

    async def get_recent_tool_calls(self, agent_key: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
        try:
            query = self._table(TABLE_TOOL_CALLS).select("*")
            if agent_key:
                query = query.eq("agent_key", agent_key)
            result = query.order("created_at", desc=True).limit(limit).execute()
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("persistent_store", str(e)) from e
        return result.data or []
