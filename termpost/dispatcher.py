"""Request execution on a background task with a single-use completion handle."""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from .errors import TransportError
from .models import HttpResponse, ResolvedRequest

logger = structlog.get_logger("termpost.dispatcher")

DEFAULT_TIMEOUT = 30.0


class HttpTransport:
    """Thin wrapper over ``httpx.AsyncClient`` producing ``HttpResponse``."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.verify = verify
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                verify=self.verify,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def execute(self, request: ResolvedRequest) -> HttpResponse:
        """Send a resolved request. Any transport failure raises TransportError."""
        client = self._get_client()
        start_time = asyncio.get_running_loop().time()

        try:
            response = await client.request(
                method=request.method.value,
                url=request.url,
                headers=request.headers,
                params=request.params or None,
                content=request.body.encode("utf-8") if request.body is not None else None,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e

        elapsed_ms = int((asyncio.get_running_loop().time() - start_time) * 1000)

        return HttpResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=list(response.headers.multi_items()),
            body=response.content,
            elapsed_ms=elapsed_ms,
        )

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


@dataclass(frozen=True)
class DispatchOutcome:
    request_id: Optional[str]
    resolved: ResolvedRequest
    response: Optional[HttpResponse] = None
    error: Optional[str] = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.response is not None


class CompletionHandle:
    """Single-use channel carrying exactly one DispatchOutcome."""

    def __init__(self, task: "asyncio.Future[DispatchOutcome]", resolved: ResolvedRequest):
        self._task = task
        self._resolved = resolved
        self._consumed = False

    def done(self) -> bool:
        return self._task.done()

    def poll(self) -> Optional[DispatchOutcome]:
        """Return the outcome if it is ready, without waiting.

        The outcome is handed out once; later polls return None.
        """
        if self._consumed or not self._task.done():
            return None
        self._consumed = True
        if self._task.cancelled():
            return DispatchOutcome(
                request_id=self._resolved.source_id,
                resolved=self._resolved,
                error="Request was cancelled",
            )
        return self._task.result()

    async def wait(self) -> DispatchOutcome:
        await asyncio.wait([self._task])
        outcome = self.poll()
        if outcome is None:
            raise RuntimeError("completion already consumed")
        return outcome


class Dispatcher:
    def __init__(self, transport: HttpTransport):
        self.transport = transport

    def dispatch(self, resolved: ResolvedRequest) -> CompletionHandle:
        """Start executing ``resolved`` in the background and return immediately.

        Must be called from code running inside the event loop.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(resolved))
        logger.info(
            "Request dispatched",
            request_id=resolved.source_id,
            method=resolved.method.value,
            url=resolved.url,
        )
        return CompletionHandle(task, resolved)

    async def _run(self, resolved: ResolvedRequest) -> DispatchOutcome:
        started = time.monotonic()
        try:
            response = await self.transport.execute(resolved)
        except TransportError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.warning(
                "Request failed",
                request_id=resolved.source_id,
                error=str(e),
                elapsed_ms=elapsed_ms,
            )
            return DispatchOutcome(
                request_id=resolved.source_id,
                resolved=resolved,
                error=str(e),
                elapsed_ms=elapsed_ms,
            )
        except Exception as e:
            # The handle must still resolve exactly once
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.exception("Unexpected dispatch failure", request_id=resolved.source_id)
            return DispatchOutcome(
                request_id=resolved.source_id,
                resolved=resolved,
                error=f"Unexpected error: {e}",
                elapsed_ms=elapsed_ms,
            )

        logger.info(
            "Request completed",
            request_id=resolved.source_id,
            status=response.status,
            elapsed_ms=response.elapsed_ms,
            size_bytes=response.size_bytes,
        )
        return DispatchOutcome(
            request_id=resolved.source_id,
            resolved=resolved,
            response=response,
            elapsed_ms=response.elapsed_ms,
        )

    async def close(self):
        await self.transport.close()
