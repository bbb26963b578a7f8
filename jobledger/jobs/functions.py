"""Name -> function registry used to resolve ``call`` and ``finish``.

Functions are registered at startup, usually with the decorator::

    from jobledger.jobs.functions import register

    @register
    def fit_model(rep, alpha=0.1):
        ...

Names of the form ``"package.module:attr"`` are imported on first lookup and
cached, so batch jobs and CLI launches can refer to functions that were never
explicitly registered.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Callable

from jobledger.jobs.errors import UnknownFunction

logger = logging.getLogger(__name__)


class FunctionRegistry:
    def __init__(self) -> None:
        self._functions: dict[str, Callable[..., Any]] = {}

    def register(self, fn: Callable[..., Any] | None = None, *, name: str | None = None):
        """Register ``fn`` under ``name`` (default: its ``__name__``).

        Usable as ``@register``, ``@register(name="x")`` or ``register(fn)``.
        """

        def _add(f: Callable[..., Any]) -> Callable[..., Any]:
            key = name or f.__name__
            if key in self._functions and self._functions[key] is not f:
                logger.warning("Replacing registered function %r", key)
            self._functions[key] = f
            return f

        if fn is None:
            return _add
        return _add(fn)

    def unregister(self, name: str) -> None:
        self._functions.pop(name, None)

    def get(self, name: str) -> Callable[..., Any]:
        fn = self._functions.get(name)
        if fn is not None:
            return fn
        if ":" in name:
            fn = _import_attr(name)
            self._functions[name] = fn
            return fn
        raise UnknownFunction(f"no function registered as {name!r}; known: {sorted(self._functions)}")

    def names(self) -> list[str]:
        return sorted(self._functions)

    def clear(self) -> None:
        self._functions.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._functions


def _import_attr(target: str) -> Callable[..., Any]:
    module_name, _, attr = target.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise UnknownFunction(f"cannot import module {module_name!r} for {target!r}: {exc}") from exc
    obj: Any = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            raise UnknownFunction(f"{module_name!r} has no attribute {attr!r}") from exc
    if not callable(obj):
        raise UnknownFunction(f"{target!r} is not callable")
    return obj


FUNCTIONS = FunctionRegistry()
register = FUNCTIONS.register
