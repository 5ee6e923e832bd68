"""Minimal name-based dependency injection library.

This package provides a small asyncio-friendly dependency injection container.
Names are bound to constants or to lazily constructed singleton services, and a
callable's dependencies are resolved by matching its parameter names against
the registry. Every resolution returns an `asyncio.Future`.

Exports:
- `Container`: The registry and resolver; registers itself under a reserved name.
- `create_container`: Build a container, optionally with a custom reserved name.
- `ServiceKind`: Marks a service as a constructor (builds on a receiver) or a
  plain factory.
- `InjectionError` and its subclasses: `NameReservedError`,
  `DuplicateRegistrationError`, `NameNotFoundError`, `CircularDependencyError`.
"""

from ._container import (
    CircularDependencyError,
    Container,
    DuplicateRegistrationError,
    InjectionError,
    NameNotFoundError,
    NameReservedError,
    ServiceKind,
    create_container,
)


__all__ = [
    "CircularDependencyError",
    "Container",
    "DuplicateRegistrationError",
    "InjectionError",
    "NameNotFoundError",
    "NameReservedError",
    "ServiceKind",
    "create_container",
]
