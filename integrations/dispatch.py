import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import httpx
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from pipeline import settings

USER_AGENT = "lead-gate/1.0"


class _ServerError(Exception):
    def __init__(self, status: int, body: Any):
        super().__init__(f"HTTP {status}")
        self.status = status
        self.body = body


def _body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class WebhookDispatcher:
    """JSON webhook poster with a short timeout and linear-backoff retries."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    async def post(
        self,
        url: Optional[str],
        payload: Any,
        timeout: float = settings.WEBHOOK_TIMEOUT,
        retries: int = settings.WEBHOOK_RETRIES,
        retry_delay: float = settings.WEBHOOK_RETRY_DELAY,
    ) -> Dict[str, Any]:
        """
        POST payload as JSON.

        Network failures and 5xx responses are retried up to `retries` times,
        waiting retry_delay, 2 * retry_delay, ... between attempts. 4xx
        responses are final.

        Returns:
            {"ok": bool, "status": int?, "error": str?, "body": Any?}
        """
        if not url:
            return {"ok": False, "error": "No webhook URL configured"}

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(retries + 1),
                wait=wait_incrementing(start=retry_delay, increment=retry_delay),
                retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
                reraise=True,
            ):
                with attempt:
                    async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                        response = await client.post(
                            url,
                            json=payload,
                            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
                        )
                    body = _body(response)
                    if response.status_code >= 500:
                        logger.warning(f"Webhook {url} returned {response.status_code} (attempt {attempt.retry_state.attempt_number})")
                        raise _ServerError(response.status_code, body)
                    if response.is_success:
                        return {"ok": True, "status": response.status_code, "body": body}
                    return {"ok": False, "status": response.status_code, "error": f"HTTP {response.status_code}", "body": body}
        except _ServerError as e:
            return {"ok": False, "status": e.status, "error": str(e), "body": e.body}
        except httpx.HTTPError as e:
            return {"ok": False, "error": str(e) or e.__class__.__name__}
        except httpx.InvalidURL as e:
            logger.error(f"Webhook URL rejected: {e}")
            return {"ok": False, "error": f"Invalid URL: {e}"}
        except (TypeError, ValueError) as e:
            # payload json.dumps failure
            logger.error(f"Webhook payload for {url} is not JSON serializable: {e}")
            return {"ok": False, "error": f"Invalid payload: {e}"}
        return {"ok": False, "error": "No attempt made"}


Job = Callable[..., Awaitable[Any]]


class TaskQueue:
    """
    In-process queue for fire-and-forget side effects.

    Jobs run on a small pool of worker tasks, away from the request path.
    Each job's failure is logged under its name and never reaches the caller
    or other jobs. Before `start()` (or after `stop()`), submitted jobs run as
    detached tasks instead.
    """

    def __init__(self, workers: int = settings.TASK_QUEUE_WORKERS, maxsize: int = 1000):
        self.workers = max(1, workers)
        self.maxsize = maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list = []
        self._detached: Set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._queue is not None:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [asyncio.create_task(self._work(i)) for i in range(self.workers)]
        logger.info(f"Task queue started with {self.workers} workers")

    async def stop(self, timeout: float = 5.0) -> None:
        if self._queue is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Task queue stopped with {self._queue.qsize()} jobs pending")
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._queue, self._workers = None, []

    def submit(self, name: str, job: Job, *args: Any, **kwargs: Any) -> bool:
        """Queue a job without waiting for it. Returns False if it was dropped."""
        if self._queue is None:
            task = asyncio.get_running_loop().create_task(self._execute(name, job, args, kwargs))
            self._detached.add(task)
            task.add_done_callback(self._detached.discard)
            return True
        try:
            self._queue.put_nowait((name, job, args, kwargs))
            return True
        except asyncio.QueueFull:
            logger.error(f"Task queue full, dropping job {name}")
            return False

    async def join(self) -> None:
        """Wait until every queued and detached job has finished."""
        if self._queue is not None:
            await self._queue.join()
        if self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    async def _work(self, index: int) -> None:
        while True:
            name, job, args, kwargs = await self._queue.get()
            try:
                await self._execute(name, job, args, kwargs)
            finally:
                self._queue.task_done()

    async def _execute(self, name: str, job: Job, args: tuple, kwargs: dict) -> None:
        try:
            result = await job(*args, **kwargs)
            if isinstance(result, dict) and result.get("ok") is False:
                logger.warning(f"Job {name} finished unsuccessfully: {result.get('error')} (status {result.get('status')})")
            else:
                logger.info(f"Job {name} completed")
        except Exception as e:
            logger.error(f"Job {name} failed: {e}")


# Global instances
dispatcher = WebhookDispatcher()
task_queue = TaskQueue()
