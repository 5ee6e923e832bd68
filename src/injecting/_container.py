from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import types
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ._util import cachify, ensure_deferred, parameters, rejected, resolved, retrieve


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    Binding = ConstantBinding | ServiceBinding

INJECTOR = "injector"

# (container, name) pairs whose construction the current task is part of.
_building: ContextVar[frozenset[tuple[Container, str]]] = ContextVar("building", default=frozenset())


class ServiceKind(Enum):
    CONSTRUCTOR = "constructor"
    FACTORY = "factory"


class InjectionError(RuntimeError):
    def __init__(self, name: str, msg: str) -> None:
        super().__init__(msg)
        self.name = name


class NameReservedError(InjectionError):
    def __init__(self, name: str) -> None:
        super().__init__(name, f"{name!r} is reserved for the container itself, try another name.")


class DuplicateRegistrationError(InjectionError):
    def __init__(self, name: str) -> None:
        super().__init__(name, f"{name!r} is already registered. Pass overwritable=True to allow replacing it.")


class NameNotFoundError(InjectionError, LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(name, f"{name!r} is not found!")


class CircularDependencyError(InjectionError):
    def __init__(self, name: str) -> None:
        super().__init__(name, f"circular dependencies found for {name}")


@dataclass
class ConstantBinding:
    value: Any

    def produce(self, _locals: Mapping[str, Any]) -> asyncio.Future[Any]:
        return resolved(self.value)


@dataclass
class ServiceBinding:
    """A lazily constructed singleton.

    `produce` is memoized in the container's cache, so the factory body runs
    again only after a failed construction.
    """

    name: str
    factory: Callable[..., Any]
    kind: ServiceKind
    container: Container = field(repr=False)
    produce: Callable[[Mapping[str, Any]], asyncio.Future[Any]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.produce = cachify(self.name, self._construct, self.container._cache)  # noqa: SLF001

    def _construct(self, locals: Mapping[str, Any]) -> asyncio.Future[Any]:  # noqa: A002
        loading = self.container._loading  # noqa: SLF001
        if self.name in loading:
            logger.debug("Circular dependency detected while constructing %r", self.name)
            raise CircularDependencyError(self.name)

        loading.add(self.name)
        logger.debug("Constructing service %r (%s)", self.name, self.kind.value)
        # Tasks spawned below copy the context, so the chain follows the construction across awaits.
        token = _building.set(_building.get() | {(self.container, self.name)})
        try:
            if self.kind is ServiceKind.CONSTRUCTOR and not inspect.isclass(self.factory):
                receiver = types.SimpleNamespace()
                future = self.container.invoke(self.factory, receiver, locals)
                future = asyncio.ensure_future(_or_receiver(future, receiver))
            else:
                # Calling a class is already construction.
                future = self.container.invoke(self.factory, locals=locals)
        except Exception as e:  # noqa: BLE001
            loading.discard(self.name)
            return rejected(e)
        finally:
            _building.reset(token)

        future.add_done_callback(lambda _: loading.discard(self.name))
        return future


async def _or_receiver(future: asyncio.Future[Any], receiver: object) -> Any:
    result = await future
    return receiver if result is None else result


class Container:
    """Name-based DI container.

    - constants and lazily built singleton services
    - dependencies matched by parameter name
    - every resolution returns an `asyncio.Future`
    - the container is injectable under its own reserved name.
    """

    def __init__(self, *, injector_name: str = INJECTOR) -> None:
        self.injector_name = injector_name
        self._bindings: dict[str, Binding] = {}
        self._overwritable: dict[str, bool] = {}
        self._cache: dict[str, asyncio.Future[Any]] = {}
        self._loading: set[str] = set()
        self._lock = threading.RLock()

        self._install(injector_name, ConstantBinding(self), overwritable=False)

    def __contains__(self, name: object) -> bool:
        return name in self._bindings

    def register(
        self,
        name: str,
        value: Any,
        *,
        overwritable: bool = False,
        kind: ServiceKind | None = None,
    ) -> None:
        """Register a service when `value` is callable, a constant otherwise.

        Example:
          container.register("port", 8080)
          container.register("db", Database)

        """
        if callable(value):
            self.register_service(name, value, overwritable=overwritable, kind=kind)
            return

        if kind is not None:
            msg = "`kind` only applies to callable values."
            raise ValueError(msg)
        self.register_constant(name, value, overwritable=overwritable)

    def register_constant(self, name: str, value: Any, *, overwritable: bool = False) -> None:
        with self._lock:
            self._check_exist(name)
            self._install(name, ConstantBinding(value), overwritable=overwritable)

    def register_service(
        self,
        name: str,
        factory: Callable[..., Any],
        *,
        overwritable: bool = False,
        kind: ServiceKind | None = None,
    ) -> None:
        """Register a lazily constructed singleton.

        Classes default to `ServiceKind.CONSTRUCTOR`, other callables to
        `ServiceKind.FACTORY`. A function registered as a constructor gets a
        fresh namespace as its first argument and may return a replacement.
        Only a `None` result falls back to the namespace; other falsy results
        such as `0` or `""` replace it like any other value.
        """
        if not callable(factory):
            msg = f"Service {name!r} needs a callable factory, got {type(factory).__name__}."
            raise TypeError(msg)

        if kind is None:
            kind = ServiceKind.CONSTRUCTOR if inspect.isclass(factory) else ServiceKind.FACTORY

        with self._lock:
            self._check_exist(name)
            self._install(name, ServiceBinding(name, factory, kind, self), overwritable=overwritable)

    def invoke(
        self,
        func: Callable[..., Any],
        context: object | None = None,
        locals: Mapping[str, Any] | None = None,  # noqa: A002
    ) -> asyncio.Future[Any]:
        """Call `func` with its dependencies resolved by parameter name.

        Resolution precedence per parameter:
        1. non-None local
        2. registration
        3. default
        4. error (NameNotFoundError).

        When `context` is given it is passed as the leading positional
        argument. Errors never escape: they reject the returned future.
        """
        locals = dict(locals or {})  # noqa: A001
        actuals: list[asyncio.Future[Any]] = []
        try:
            params = parameters(func, bound=context is not None)
            for p in params:
                actuals.append(self._resolve_param(p, locals))
        except Exception as e:  # noqa: BLE001
            # Nobody will await the dependencies resolved so far.
            for future in actuals:
                future.add_done_callback(retrieve)
            return rejected(e)

        return asyncio.ensure_future(self._call(func, context, params, actuals))

    def get(self, name: str, locals: Mapping[str, Any] | None = None) -> asyncio.Future[Any]:  # noqa: A002
        """Resolve one name. Always returns a future, for constants too."""
        try:
            return self._lookup(name, dict(locals or {}))
        except Exception as e:  # noqa: BLE001
            return rejected(e)

    def destroy(self) -> None:
        """Drop every binding and cached instance so they can be collected."""
        with self._lock:
            self._bindings.clear()
            self._overwritable.clear()
            self._cache.clear()
            self._loading.clear()
        logger.debug("Container %r destroyed", self.injector_name)

    def _check_exist(self, name: str) -> None:
        if name == self.injector_name:
            raise NameReservedError(name)

        if name in self._bindings and not self._overwritable.get(name, False):
            raise DuplicateRegistrationError(name)

    def _install(self, name: str, binding: Binding, *, overwritable: bool) -> None:
        self._overwritable[name] = overwritable
        self._cache.pop(name, None)
        self._bindings[name] = binding
        logger.debug("Registered %r as %s", name, type(binding).__name__)

    def _lookup(self, name: str, locals: Mapping[str, Any]) -> asyncio.Future[Any]:  # noqa: A002
        binding = self._bindings.get(name)
        if binding is None:
            raise NameNotFoundError(name)

        # Checked before the cache: the in-flight future would otherwise wait on itself.
        cached = self._cache.get(name)
        if (self, name) in _building.get() and (cached is None or not cached.done()):
            logger.debug("Circular dependency detected: %r requested while being constructed", name)
            raise CircularDependencyError(name)
        return binding.produce(locals)

    def _resolve_param(self, p: inspect.Parameter, locals: Mapping[str, Any]) -> asyncio.Future[Any]:  # noqa: A002
        value = locals.get(p.name)
        if value is not None:
            return ensure_deferred(value)

        if p.name not in self._bindings and p.default is not inspect.Parameter.empty:
            return resolved(p.default)

        return self._lookup(p.name, locals)

    async def _call(
        self,
        func: Callable[..., Any],
        context: object | None,
        params: list[inspect.Parameter],
        actuals: list[asyncio.Future[Any]],
    ) -> Any:
        values = await asyncio.gather(*actuals)

        args: list[Any] = [] if context is None else [context]
        kwargs: dict[str, Any] = {}
        for p, value in zip(params, values, strict=True):
            if p.kind is p.KEYWORD_ONLY:
                kwargs[p.name] = value
            else:
                args.append(value)

        result = func(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def create_container(*, injector_name: str = INJECTOR) -> Container:
    return Container(injector_name=injector_name)
