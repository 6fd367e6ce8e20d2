"""Typed failures raised by the image pipeline and provider clients."""

from __future__ import annotations

from typing import Any, Sequence


class SeedreamError(RuntimeError):
    status_code = 500


class RequestValidationError(SeedreamError, ValueError):
    status_code = 400


class ProviderConfigError(SeedreamError):
    """A provider is missing credentials, disabled, or misconfigured."""

    status_code = 500


class ImagePipelineError(SeedreamError):
    status_code = 400


class UnsupportedImageError(ImagePipelineError):
    def __init__(self, message: str, *, declared_mime_type: str | None = None) -> None:
        super().__init__(message)
        self.declared_mime_type = declared_mime_type


class SourceTooLargeError(ImagePipelineError):
    status_code = 413

    def __init__(self, message: str, *, byte_length: int, limit: int) -> None:
        super().__init__(message)
        self.byte_length = byte_length
        self.limit = limit


class SizeBudgetExceededError(ImagePipelineError):
    """No re-encoding within the attempt budget fit under the byte ceiling.

    ``attempts`` lists every ``(width, height, quality, byte_length)`` tried,
    in order, so callers can report how far the ladder got.
    """

    status_code = 413

    def __init__(
        self,
        message: str,
        *,
        original_size: tuple[int, int],
        max_bytes: int,
        attempts: Sequence[tuple[int, int, int, int]],
    ) -> None:
        super().__init__(message)
        self.original_size = original_size
        self.max_bytes = max_bytes
        self.attempts = list(attempts)


class ProviderError(SeedreamError):
    status_code = 502

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderRejectedError(ProviderError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.upstream_status = status_code
        self.body = body


class ProviderUnavailableError(ProviderError):
    """Polling could not reach the provider after the transient retry budget."""

    def __init__(
        self,
        message: str,
        *,
        job_id: str | None = None,
        status_code: int | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.job_id = job_id
        self.upstream_status = status_code


class JobFailedError(ProviderError):
    def __init__(
        self,
        detail: str,
        *,
        job_id: str | None = None,
        status: str | None = None,
        payload: Any = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(detail, provider=provider)
        self.detail = detail
        self.job_id = job_id
        self.status = status
        self.payload = payload


class JobTimeoutError(ProviderError):
    status_code = 504

    def __init__(
        self,
        message: str,
        *,
        job_id: str | None = None,
        last_status: str | None = None,
        elapsed_s: float | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.job_id = job_id
        self.last_status = last_status
        self.elapsed_s = elapsed_s
