from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import TYPE_CHECKING, Any


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, MutableMapping

    Producer = Callable[[Any], asyncio.Future[Any]]

_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


def parameters(func: Callable[..., Any], *, bound: bool = False) -> list[inspect.Parameter]:
    """Return the injectable parameters `func` declares, in order.

    Variadic parameters are never injected. With `bound=True` the first
    positional parameter receives the call context and is skipped.
    """
    try:
        sig = inspect.signature(func)
    except ValueError:
        # Builtins without introspectable signatures take nothing we can inject.
        logger.debug("No signature available for %r", func)
        return []

    params = [p for p in sig.parameters.values() if p.kind not in _VARIADIC]
    if not bound:
        return params

    if not params or params[0].kind not in _POSITIONAL:
        msg = f"{getattr(func, '__qualname__', func)!r} cannot receive a context: no leading positional parameter"
        raise TypeError(msg)
    return params[1:]


def cachify(key: str, producer: Producer, cache: MutableMapping[str, asyncio.Future[Any]]) -> Producer:
    """Remember the deferred value `producer` returns under `cache[key]`.

    The future is stored as soon as the producer returns, so callers arriving
    while it is still pending share it. A future that settles with an error
    is evicted and the next call runs the producer again.
    """

    def cached(arg: Any) -> asyncio.Future[Any]:
        future = cache.get(key)
        if future is not None:
            return future

        future = producer(arg)
        cache[key] = future
        future.add_done_callback(functools.partial(_evict_failed, cache, key))
        return future

    return cached


def _evict_failed(cache: MutableMapping[str, asyncio.Future[Any]], key: str, future: asyncio.Future[Any]) -> None:
    if cache.get(key) is not future:
        return
    if future.cancelled() or future.exception() is not None:
        del cache[key]


def retrieve(future: asyncio.Future[Any]) -> None:
    """Done callback marking a discarded future's exception as retrieved."""
    if not future.cancelled():
        future.exception()


def resolved(value: Any) -> asyncio.Future[Any]:
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


def rejected(exc: BaseException) -> asyncio.Future[Any]:
    future = asyncio.get_running_loop().create_future()
    future.set_exception(exc)
    return future


def ensure_deferred(value: Any) -> asyncio.Future[Any]:
    """Wrap `value` in a future, adopting it when it is already awaitable."""
    if inspect.isawaitable(value):
        return asyncio.ensure_future(value)
    return resolved(value)
