"""Submit-then-poll client for long-running prediction jobs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

import httpx

from ..errors import JobFailedError, JobTimeoutError, ProviderRejectedError, ProviderUnavailableError
from .outputs import flatten_output_urls


logger = logging.getLogger(__name__)

SUBMITTED = "submitted"
NON_TERMINAL_STATUSES = {"starting", "processing"}
SUCCESS_STATUSES = {"succeeded"}
FAILURE_STATUSES = {"failed", "canceled"}
TRANSIENT_STATUS_CODES = {429, 502, 503, 504}

_STATUS_RANK = {
    SUBMITTED: 0,
    "starting": 1,
    "processing": 2,
    "succeeded": 3,
    "failed": 3,
    "canceled": 3,
}


@dataclass
class JobHandle:
    job_id: str
    polling_url: str | None
    status: str = SUBMITTED
    last_payload: Mapping[str, Any] = field(default_factory=dict, repr=False)
    result_url: str | None = None
    polls: int = 0
    _rank: int = field(default=0, init=False, repr=False)

    @property
    def terminal(self) -> bool:
        return self.status in SUCCESS_STATUSES or self.status in FAILURE_STATUSES

    def advance(self, status: str, payload: Mapping[str, Any], polling_url: str | None = None) -> None:
        if self.terminal:
            raise RuntimeError(f"Job {self.job_id} already reached terminal status '{self.status}'.")
        self.last_payload = payload
        if polling_url:
            self.polling_url = polling_url
        response_url = payload.get("response_url")
        if isinstance(response_url, str) and response_url:
            self.result_url = response_url
        rank = _STATUS_RANK.get(status)
        if rank is None:
            # Unrecognised statuses keep polling without moving the rank.
            self.status = status
            return
        if rank < self._rank:
            return
        self._rank = rank
        self.status = status


class _TransientPollError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class JobPoller:
    """Drive a provider prediction from submission to a terminal state.

    Statuses ``starting`` and ``processing`` keep the loop going, as does any
    status the poller does not recognise. ``succeeded`` yields the flattened
    output URLs; ``failed`` and ``canceled`` raise ``JobFailedError`` with the
    provider's error text. The loop sleeps ``poll_interval`` seconds before
    every status check and gives up after ``poll_timeout`` seconds unless that
    is ``None``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        provider: str = "replicate",
        poll_interval: float = 1.5,
        poll_timeout: float | None = None,
        max_transient_retries: int = 3,
        status_aliases: Mapping[str, str] | None = None,
        status_url_template: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self.provider = provider
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.max_transient_retries = max(0, int(max_transient_retries))
        self._status_aliases = dict(status_aliases or {})
        self._status_url_template = status_url_template
        self._sleep = sleep
        self._clock = clock

    async def submit_and_await(self, endpoint: str, payload: Mapping[str, Any]) -> list[str]:
        handle = await self.submit(endpoint, payload)
        return await self.wait(handle)

    async def submit(self, endpoint: str, payload: Mapping[str, Any]) -> JobHandle:
        try:
            response = await self._client.post(endpoint, json=dict(payload))
        except httpx.HTTPError as exc:
            raise ProviderRejectedError(
                f"{self.provider} submission failed: {exc}",
                provider=self.provider,
            ) from exc
        if response.is_error:
            raise ProviderRejectedError(
                f"{self.provider} API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
                provider=self.provider,
            )
        body = _json_body(response)
        job_id = str(body.get("id") or body.get("request_id") or "")
        handle = JobHandle(job_id=job_id, polling_url=self._polling_url(body, job_id))
        handle.advance(self._status_of(body), body)
        logger.info("%s job %s submitted with status %s", self.provider, job_id or "<unknown>", handle.status)
        return handle

    async def wait(self, handle: JobHandle) -> list[str]:
        started = self._clock()
        consecutive_failures = 0
        while True:
            if handle.status in SUCCESS_STATUSES:
                output = await self._terminal_output(handle)
                return flatten_output_urls(output)
            if handle.status in FAILURE_STATUSES:
                raise JobFailedError(
                    _failure_detail(handle, self.provider),
                    job_id=handle.job_id,
                    status=handle.status,
                    payload=handle.last_payload,
                    provider=self.provider,
                )
            if not handle.polling_url:
                raise ProviderUnavailableError(
                    f"{self.provider} prediction did not complete successfully (no polling location).",
                    job_id=handle.job_id,
                    provider=self.provider,
                )
            elapsed = self._clock() - started
            if self.poll_timeout is not None and elapsed >= self.poll_timeout:
                raise JobTimeoutError(
                    f"{self.provider} job {handle.job_id} did not finish within {self.poll_timeout:.1f}s.",
                    job_id=handle.job_id,
                    last_status=handle.status,
                    elapsed_s=elapsed,
                    provider=self.provider,
                )

            await self._sleep(self.poll_interval)
            try:
                body = await self._get_json(handle.polling_url)
            except _TransientPollError as exc:
                consecutive_failures += 1
                if consecutive_failures > self.max_transient_retries:
                    raise ProviderUnavailableError(
                        f"{self.provider} polling failed after {consecutive_failures} attempts: {exc}",
                        job_id=handle.job_id,
                        status_code=exc.status_code,
                        provider=self.provider,
                    ) from exc
                logger.warning(
                    "%s poll for job %s failed (%s); retry %s/%s",
                    self.provider,
                    handle.job_id,
                    exc,
                    consecutive_failures,
                    self.max_transient_retries,
                )
                continue
            consecutive_failures = 0
            handle.polls += 1
            handle.advance(self._status_of(body), body, polling_url=self._polling_url(body, handle.job_id))
            logger.debug("%s job %s poll %s: %s", self.provider, handle.job_id, handle.polls, handle.status)

    async def _terminal_output(self, handle: JobHandle) -> Any:
        return handle.last_payload.get("output")

    async def _get_json(self, url: str) -> dict[str, Any]:
        try:
            response = await self._client.get(url)
        except httpx.TransportError as exc:
            raise _TransientPollError(str(exc) or type(exc).__name__) from exc
        if response.status_code in TRANSIENT_STATUS_CODES:
            raise _TransientPollError(f"HTTP {response.status_code}", status_code=response.status_code)
        if response.is_error:
            raise ProviderUnavailableError(
                f"{self.provider} polling error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                provider=self.provider,
            )
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise ProviderUnavailableError(
                f"{self.provider} returned a malformed poll response: {response.text[:200]}",
                status_code=response.status_code,
                provider=self.provider,
            )
        return body

    def _status_of(self, body: Mapping[str, Any]) -> str:
        raw = str(body.get("status") or "").strip()
        if raw in self._status_aliases:
            return self._status_aliases[raw]
        return raw.lower()

    def _polling_url(self, body: Mapping[str, Any], job_id: str) -> str | None:
        urls = body.get("urls")
        if isinstance(urls, Mapping) and isinstance(urls.get("get"), str) and urls["get"]:
            return urls["get"]
        for key in ("status_url", "polling_url"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        if self._status_url_template and job_id:
            return self._status_url_template.format(id=job_id)
        return None


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {"raw": response.text}
    return payload if isinstance(payload, dict) else {"output": payload}


def _failure_detail(handle: JobHandle, provider: str) -> str:
    error = handle.last_payload.get("error")
    if isinstance(error, str) and error:
        return error
    if isinstance(error, Mapping):
        message = error.get("message") or error.get("detail")
        if message:
            return str(message)
    if error:
        return str(error)
    return f"{provider} request {handle.status}"
