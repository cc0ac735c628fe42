"""Drive the shared async core from synchronous code."""

from __future__ import annotations

import typing

_T = typing.TypeVar("_T")


def iter_coroutine(coro: typing.Coroutine[None, None, _T]) -> _T:
    """Run ``coro`` to completion without an event loop.

    Sync storage clients build their operations on the same coroutines as
    the async clients, but back them with a blocking transport that never
    yields. Such a coroutine finishes on its first ``send(None)``; anything
    that does suspend is a programming error (for example an async token
    provider that actually awaits I/O) and raises RuntimeError.
    """
    try:
        coro.send(None)
    except StopIteration as stop:
        return stop.value  # type: ignore [no-any-return]
    else:
        raise RuntimeError(
            f"{coro!r} suspended; sync storage clients require non-suspending callbacks"
        )
    finally:
        coro.close()


__all__ = ["iter_coroutine"]
