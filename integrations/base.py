import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from loguru import logger

from pipeline.state import WorkspaceCriteria


class MissingAPIKey(RuntimeError):
    """Raised by a provider client constructed without its API key."""

    def __init__(self, env_var: str):
        super().__init__(f"Missing {env_var}")
        self.env_var = env_var


@dataclass
class ProviderError:
    """Why a provider produced nothing: HTTP status and raw body, or a message."""
    message: str
    status: Optional[int] = None
    body: Any = None

    def to_debug(self) -> Any:
        if self.status is None and self.body is None:
            return self.message
        return {"status": self.status, "body": self.body, "message": self.message}


@dataclass
class ProviderResult:
    provider: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[ProviderError] = None
    cached: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.data is not None


class ProviderAdapter:
    """
    Common boundary for enrichment providers.

    Subclasses implement `_fetch`. `fetch` bounds it with the adapter's own
    timeout and turns timeouts and unexpected exceptions into a ProviderResult
    carrying an error, so nothing raises past this point. Cancelling one
    adapter never touches its siblings.
    """

    name = "provider"
    # EnrichedResult key this provider fills
    field = ""

    def __init__(self, timeout: float):
        self.timeout = timeout

    async def fetch(
        self,
        domain: str,
        company_name: Optional[str] = None,
        criteria: Optional[WorkspaceCriteria] = None,
    ) -> ProviderResult:
        try:
            return await asyncio.wait_for(
                self._fetch(domain, company_name=company_name, criteria=criteria),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] timed out after {self.timeout}s for {domain}")
            return ProviderResult(self.name, error=ProviderError(f"Timed out after {self.timeout}s"))
        except Exception as e:
            logger.error(f"[{self.name}] failed for {domain}: {e}")
            return ProviderResult(self.name, error=ProviderError(str(e) or e.__class__.__name__))

    async def _fetch(
        self,
        domain: str,
        company_name: Optional[str] = None,
        criteria: Optional[WorkspaceCriteria] = None,
    ) -> ProviderResult:
        raise NotImplementedError
