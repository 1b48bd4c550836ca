import asyncio
import json
import os
import tempfile
from typing import Any, Dict, List, Optional

from loguru import logger

from integrations.cache import Cache, cache as default_cache, workspace_key
from pipeline import settings
from pipeline.state import WorkspaceCriteria

CRITERIA_FIELDS = ("min_employees", "min_funding_usd", "min_revenue_usd")


class WorkspaceNotFound(KeyError):
    pass


def clean_criteria(raw: Any) -> Optional[WorkspaceCriteria]:
    """Keep known numeric thresholds; None when nothing usable is configured."""
    if not isinstance(raw, dict):
        return None
    criteria: WorkspaceCriteria = {}
    for key in CRITERIA_FIELDS:
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            criteria[key] = value
    return criteria or None


class WorkspaceStore:
    """
    Workspace configuration kept in a JSON file, read through the cache.

    The file holds a list of workspace objects (or a dict keyed by name) with
    workspace_name, booking_url, success_page_url, form_provider, criteria and
    optional slack_access_token / slack_channel_id. The file is the source of
    truth; cached copies may be up to WORKSPACE_CACHE_TTL stale and are
    dropped whenever a workspace is updated here.
    """

    def __init__(self, path: Optional[str] = None, cache: Optional[Cache] = None, ttl: int = settings.WORKSPACE_CACHE_TTL):
        self.path = path or settings.WORKSPACES_PATH
        self.cache = cache or default_cache
        self.ttl = ttl

    def _load(self) -> List[Dict[str, Any]]:
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Workspace config not found at {self.path}")
            return []
        except json.JSONDecodeError:
            logger.error(f"Invalid JSON in workspace config {self.path}")
            return []
        if isinstance(data, dict):
            return [dict(v, workspace_name=v.get("workspace_name", k)) for k, v in data.items() if isinstance(v, dict)]
        return [w for w in data if isinstance(w, dict)] if isinstance(data, list) else []

    def _save(self, workspaces: List[Dict[str, Any]]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".json")
        with os.fdopen(fd, "w") as f:
            json.dump(workspaces, f, indent=2)
        os.replace(tmp_path, self.path)

    async def get_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        workspaces = await asyncio.to_thread(self._load)
        return next((w for w in workspaces if w.get("workspace_name") == name), None)

    async def get_with_cache(self, name: str) -> Optional[Dict[str, Any]]:
        """Workspace by name, from cache when possible. Misses are not cached."""
        if not name:
            return None
        key = workspace_key(name)
        cached = await self.cache.get(key)
        if cached:
            return cached

        workspace = await self.get_by_name(name)
        if workspace:
            await self.cache.set(key, workspace, self.ttl)
        return workspace

    async def get_criteria(self, name: str) -> Optional[WorkspaceCriteria]:
        workspace = await self.get_with_cache(name)
        return clean_criteria(workspace.get("criteria")) if workspace else None

    async def update(self, name: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply changes to a workspace and invalidate its cache entry.

        Raises:
            WorkspaceNotFound: if no workspace has that name
        """
        workspaces = await asyncio.to_thread(self._load)
        workspace = next((w for w in workspaces if w.get("workspace_name") == name), None)
        if workspace is None:
            raise WorkspaceNotFound(name)
        workspace.update(changes)
        workspace["workspace_name"] = name
        await asyncio.to_thread(self._save, workspaces)
        await self.cache.delete(workspace_key(name))
        logger.info(f"Workspace {name} updated, cache invalidated")
        return workspace


# Global workspace store instance
workspace_store = WorkspaceStore()


async def get_workspace_criteria(name: str) -> Optional[WorkspaceCriteria]:
    """Criteria for a workspace using the global store."""
    return await workspace_store.get_criteria(name)
