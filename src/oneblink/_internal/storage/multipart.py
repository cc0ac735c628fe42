from __future__ import annotations

import itertools
import math
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, TypeVar

import anyio

from oneblink._internal.iter_coroutine import iter_coroutine
from oneblink._internal.storage import await_if_necessary
from oneblink._internal.storage.cancellation import CancellationToken
from oneblink._internal.storage.errors import StorageRequestAbortedError
from oneblink._internal.storage.types import OnProgressCallback, ProgressEvent, UploadedPart

_T = TypeVar("_T")

SyncPartUploadFn = Callable[[int, bytes], UploadedPart]
AsyncPartUploadFn = Callable[[int, bytes], Awaitable[UploadedPart]]

PART_SIZE = 5 * 1024 * 1024  # 5 MiB, the S3 minimum for every part but the last


@dataclass(frozen=True)
class MultipartUploadSession:
    upload_id: str
    key: str


def determine_upload_progress_as_percentage(loaded: int | None, total: int) -> int:
    """Whole percentage of ``total`` uploaded, rounded down."""
    return math.floor(((loaded or 0) / total) * 100)


# ---------------------------------------------------------------------------
# Part-byte iterators
# ---------------------------------------------------------------------------


def _slice(data: bytes | bytearray | memoryview, part_size: int) -> Iterator[bytes]:
    view = memoryview(data)
    for offset in range(0, len(view), part_size):
        yield bytes(view[offset : offset + part_size])


def _rechunk(chunks: Iterable[Any], part_size: int) -> Iterator[bytes]:
    buffer = bytearray()
    for chunk in chunks:
        buffer.extend(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
        while len(buffer) >= part_size:
            yield bytes(buffer[:part_size])
            del buffer[:part_size]
    if buffer:
        yield bytes(buffer)


def _iter_reads(stream: Any, size: int) -> Iterator[Any]:
    # Text streams signal EOF with "" rather than b""
    while True:
        chunk = stream.read(size)
        if not chunk:
            return
        yield chunk


def iter_body_parts(body: Any, part_size: int = PART_SIZE) -> Iterator[bytes]:
    """Yield ``body`` as consecutive parts of exactly ``part_size`` bytes.

    Only the last part may be shorter. An empty body yields nothing.
    """
    if body is None:
        return
    if isinstance(body, str):
        yield from _slice(body.encode("utf-8"), part_size)
        return
    if isinstance(body, (bytes, bytearray, memoryview)):
        yield from _slice(body, part_size)
        return
    if hasattr(body, "read"):
        yield from _rechunk(_iter_reads(body, part_size), part_size)
        return
    if isinstance(body, Iterable):
        yield from _rechunk(body, part_size)
        return
    raise TypeError(f"Unsupported upload body type: {type(body).__name__}")


async def aiter_body_parts(body: Any, part_size: int = PART_SIZE) -> AsyncIterator[bytes]:
    if hasattr(body, "__aiter__"):
        buffer = bytearray()
        async for chunk in body:
            buffer.extend(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
            while len(buffer) >= part_size:
                yield bytes(buffer[:part_size])
                del buffer[:part_size]
        if buffer:
            yield bytes(buffer)
        return
    for part in iter_body_parts(body, part_size):
        yield part


async def _prepend(head: Iterable[bytes], rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    for part in head:
        yield part
    async for part in rest:
        yield part


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class ProgressTracker:
    """Aggregates uploaded bytes across parts into percentage events.

    Events are emitted only when the total size is known, never decrease,
    and stop for good once :meth:`close` is called.
    """

    def __init__(self, total: int | None, on_progress: OnProgressCallback | None) -> None:
        self._lock = threading.RLock()
        self._total = total
        self._on_progress = on_progress
        self._loaded = 0
        self._last_progress = -1
        self._closed = False

    @property
    def total(self) -> int | None:
        return self._total

    @property
    def loaded(self) -> int:
        return self._loaded

    def set_total(self, total: int) -> None:
        with self._lock:
            if self._total is None:
                self._total = total

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def advance(self, nbytes: int) -> Any:
        """Record ``nbytes`` more bytes and return the callback's result, if any."""
        with self._lock:
            self._loaded += nbytes
            if self._closed or self._on_progress is None or not self._total:
                return None
            progress = determine_upload_progress_as_percentage(
                min(self._loaded, self._total), self._total
            )
            if progress < self._last_progress:
                return None
            self._last_progress = progress
            # Reentrant: the callback may cancel, which closes this tracker
            return self._on_progress(ProgressEvent(progress=progress, total=100))


# ---------------------------------------------------------------------------
# Upload runtime classes
# ---------------------------------------------------------------------------


class _SyncMultipartUploadRuntime:
    def split_body(self, body: Any) -> tuple[bytes, Iterator[bytes] | None]:
        """Return the first part, plus every part when there is more than one."""
        parts = iter_body_parts(body)
        first = next(parts, b"")
        second = next(parts, None)
        if second is None:
            return first, None
        return first, itertools.chain((first, second), parts)

    async def run(
        self,
        operation: Callable[[], Awaitable[_T]],
        *,
        tracker: ProgressTracker | None,
        cancellation: CancellationToken | None,
    ) -> _T:
        if cancellation is None:
            return await operation()
        if cancellation.cancelled:
            raise StorageRequestAbortedError()

        unregister = cancellation.add_listener(tracker.close if tracker else lambda: None)
        try:
            result = await operation()
        except Exception as exc:
            if cancellation.cancelled:
                raise StorageRequestAbortedError() from exc
            raise
        finally:
            unregister()
        # A blocking request cannot be interrupted; report the abort once it returns
        if cancellation.cancelled:
            raise StorageRequestAbortedError()
        return result

    def upload(
        self,
        *,
        parts: Iterable[bytes],
        queue_size: int,
        tracker: ProgressTracker,
        cancellation: CancellationToken | None,
        upload_part_fn: SyncPartUploadFn,
    ) -> list[UploadedPart]:
        results: list[UploadedPart] = []

        def upload_one(part_number: int, content: bytes) -> UploadedPart:
            uploaded = upload_part_fn(part_number, content)
            # An async callback still has to run to completion on this thread
            iter_coroutine(await_if_necessary(tracker.advance(len(content))))
            return uploaded

        with ThreadPoolExecutor(max_workers=queue_size) as executor:
            inflight = set()
            for part_number, chunk in enumerate(parts, start=1):
                if cancellation is not None and cancellation.cancelled:
                    break
                inflight.add(executor.submit(upload_one, part_number, chunk))
                if len(inflight) >= queue_size:
                    done, inflight = wait(inflight, return_when=FIRST_COMPLETED)
                    for completed in done:
                        results.append(completed.result())

            if inflight:
                done, _ = wait(inflight)
                for completed in done:
                    results.append(completed.result())

        return sorted(results, key=lambda part: part.part_number)


class _AsyncMultipartUploadRuntime:
    async def split_body(self, body: Any) -> tuple[bytes, AsyncIterator[bytes] | None]:
        parts = aiter_body_parts(body)
        first = await anext(parts, b"")
        second = await anext(parts, None)
        if second is None:
            return first, None
        return first, _prepend((first, second), parts)

    async def run(
        self,
        operation: Callable[[], Awaitable[_T]],
        *,
        tracker: ProgressTracker | None,
        cancellation: CancellationToken | None,
    ) -> _T:
        if cancellation is None:
            return await operation()

        result: list[_T] = []
        with anyio.CancelScope() as scope:

            def abort() -> None:
                if tracker is not None:
                    tracker.close()
                scope.cancel()

            unregister = cancellation.add_listener(abort)
            try:
                result.append(await operation())
            except Exception as exc:
                if cancellation.cancelled:
                    raise StorageRequestAbortedError() from exc
                raise
            finally:
                unregister()

        if cancellation.cancelled or not result:
            raise StorageRequestAbortedError()
        return result[0]

    async def upload(
        self,
        *,
        parts: AsyncIterator[bytes],
        queue_size: int,
        tracker: ProgressTracker,
        cancellation: CancellationToken | None,
        upload_part_fn: AsyncPartUploadFn,
    ) -> list[UploadedPart]:
        semaphore = anyio.Semaphore(queue_size)
        results_by_part: dict[int, UploadedPart] = {}
        errors: list[Exception] = []

        async with anyio.create_task_group() as task_group:

            async def upload_one(part_number: int, content: bytes) -> None:
                try:
                    results_by_part[part_number] = await upload_part_fn(part_number, content)
                    await await_if_necessary(tracker.advance(len(content)))
                except Exception as exc:
                    # First failure stops the remaining parts; uploaded parts stay on the server
                    errors.append(exc)
                    task_group.cancel_scope.cancel()
                finally:
                    semaphore.release()

            try:
                part_number = 1
                async for chunk in parts:
                    await semaphore.acquire()
                    task_group.start_soon(upload_one, part_number, chunk)
                    part_number += 1
            except Exception as exc:
                errors.append(exc)
                task_group.cancel_scope.cancel()

        if errors:
            raise errors[0]
        return [results_by_part[number] for number in sorted(results_by_part)]


def create_sync_multipart_upload_runtime() -> _SyncMultipartUploadRuntime:
    return _SyncMultipartUploadRuntime()


def create_async_multipart_upload_runtime() -> _AsyncMultipartUploadRuntime:
    return _AsyncMultipartUploadRuntime()


__all__ = [
    "PART_SIZE",
    "MultipartUploadSession",
    "determine_upload_progress_as_percentage",
    "iter_body_parts",
    "aiter_body_parts",
    "ProgressTracker",
    "create_sync_multipart_upload_runtime",
    "create_async_multipart_upload_runtime",
]
