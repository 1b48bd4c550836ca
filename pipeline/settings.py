"""
Runtime configuration for the lead qualification service.

Values come from the environment (a local .env file is loaded first) and are
read once at import time. API keys are not kept here: each provider client
reads its own key when it is constructed.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


# =============================================================================
# PROVIDER BUDGETS (seconds)
# =============================================================================

PDL_TIMEOUT = _float("PDL_TIMEOUT_SECONDS", 9.0)
SERP_TIMEOUT = _float("SERP_TIMEOUT_SECONDS", 9.0)
SERP_REQUEST_TIMEOUT = _float("SERP_REQUEST_TIMEOUT_SECONDS", 2.5)
SERP_MAX_QUERIES = _int("SERP_MAX_QUERIES", 3)
LLM_TIMEOUT = _float("LLM_TIMEOUT_SECONDS", 9.0)

# serp | llm | none
ADVISORY_PROVIDER = os.getenv("ADVISORY_PROVIDER", "serp").lower()

# =============================================================================
# REVENUE SIGNAL
# =============================================================================

MIN_REVENUE_USD = _float("MIN_REVENUE_USD", 50_000_000)
REVENUE_RECENCY_YEARS = _int("REVENUE_RECENCY_YEARS", 3)

# =============================================================================
# CACHE
# =============================================================================

ENRICHMENT_CACHE_TTL = _int("ENRICHMENT_CACHE_TTL", 604800)  # 7 days
WORKSPACE_CACHE_TTL = _int("WORKSPACE_CACHE_TTL", 86400)  # 1 day
CACHE_TIMEOUT = _float("CACHE_TIMEOUT_SECONDS", 0.5)
CACHE_MAX_ENTRIES = _int("CACHE_MAX_ENTRIES", 10000)  # in-memory fallback only

# =============================================================================
# OUTBOUND WEBHOOKS
# =============================================================================

CLAY_WEBHOOK_URL = os.getenv("CLAY_WEBHOOK_URL")
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL")
WEBHOOK_TIMEOUT = _float("WEBHOOK_TIMEOUT_SECONDS", 1.5)
WEBHOOK_RETRIES = _int("WEBHOOK_RETRIES", 1)
WEBHOOK_RETRY_DELAY = _float("WEBHOOK_RETRY_DELAY_SECONDS", 0.3)
TASK_QUEUE_WORKERS = _int("TASK_QUEUE_WORKERS", 4)

# =============================================================================
# COLLABORATOR STORAGE
# =============================================================================

WORKSPACES_PATH = os.getenv("WORKSPACES_JSON", "./infra/workspaces.json")
ANALYTICS_PATH = os.getenv("ANALYTICS_JSONL", "./data/analytics.jsonl")

# =============================================================================
# REDIRECT FALLBACKS
# =============================================================================

FALLBACK_SUCCESS_URL = os.getenv("FALLBACK_SUCCESS_URL", "https://example.com/success")
FALLBACK_DISQUALIFY_URL = os.getenv("FALLBACK_DISQUALIFY_URL", "https://example.com/disqualify")
ERROR_URL = os.getenv("ERROR_REDIRECT_URL", "https://example.com/error")
