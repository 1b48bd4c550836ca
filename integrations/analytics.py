import asyncio
import json
import os
import time
from typing import Any, Dict, List, Optional

from loguru import logger

from pipeline import settings


def build_event(state: Dict[str, Any], event: str = "lead_qualification") -> Dict[str, Any]:
    """Analytics row for one qualification; optional fields only when known."""
    enriched = state.get("enriched", {})
    derived = enriched.get("derived", {})
    company = enriched.get("company_enrichment") or {}
    qualification = state.get("qualification", {})

    row: Dict[str, Any] = {
        "event": event,
        "email": derived.get("email", ""),
        "domain": derived.get("domain") or "",
        "workspaceName": state.get("workspace_name", ""),
        "qualified": {
            "result": bool(qualification.get("approved")),
            "reason": qualification.get("reason", ""),
        },
        "ts": int(time.time() * 1000),
    }
    optional = {
        "employees": company.get("employee_count"),
        "funding": company.get("total_funding_raised"),
        "sector": company.get("sector"),
        "size": company.get("size"),
        "companyName": company.get("name") or derived.get("company_name") or None,
    }
    row.update({k: v for k, v in optional.items() if v is not None})
    return row


class AnalyticsStore:
    """Append-only JSONL log of qualification events."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or settings.ANALYTICS_PATH

    def _append(self, row: Dict[str, Any]) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(row) + "\n")

    def _read(self) -> List[Dict[str, Any]]:
        rows = []
        try:
            with open(self.path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        rows.append(json.loads(line))
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping corrupt analytics line in {self.path}")
        except FileNotFoundError:
            return []
        return rows

    async def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.to_thread(self._append, row)
        return {"ok": True}

    async def summary_for_workspace(self, workspace_name: str) -> Dict[str, int]:
        """Submission and qualified counts for one workspace."""
        rows = await asyncio.to_thread(self._read)
        rows = [r for r in rows if r.get("workspaceName") == workspace_name]
        qualified = sum(1 for r in rows if (r.get("qualified") or {}).get("result") is True)
        return {"submissions": len(rows), "qualified": qualified}


# Global analytics store instance
analytics_store = AnalyticsStore()
