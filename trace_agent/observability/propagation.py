"""
trace-agent - Context Propagation Mechanisms

Carries the current trace context (the root span of the logical request)
across asynchronous continuations.

Mechanisms:
- ``contextvars``: native; asyncio tasks and ``copy_context`` propagate it
- ``threadlocal``: fallback; a thread-local slot plus hooks on
  ``threading.Thread`` that hand the parent's context to new threads
- ``none``: always returns the root context

Only one mechanism is enabled at a time. A disabled mechanism reports the
root context and runs callbacks unchanged.
"""
from __future__ import annotations

import contextvars
import functools
import threading
from typing import Any, Callable, Dict, Optional, Type, TypeVar

T = TypeVar("T")

ROOT_CONTEXT: Any = None

_trace_context: contextvars.ContextVar[Any] = contextvars.ContextVar(
    "trace_agent_context", default=ROOT_CONTEXT
)


class _ThreadState(threading.local):
    context: Any = ROOT_CONTEXT


_thread_state = _ThreadState()
_NOT_ENTERED = object()
_original_thread_init: Optional[Callable[..., None]] = None


def install_thread_hooks() -> bool:
    """
    Patch ``threading.Thread`` so new threads inherit the creating thread's
    thread-local trace context. Idempotent.

    Returns:
        True if the hooks were installed by this call
    """
    global _original_thread_init
    if _original_thread_init is not None:
        return False

    original_init = threading.Thread.__init__

    @functools.wraps(original_init)
    def __init__(self: threading.Thread, *args: Any, **kwargs: Any) -> None:
        original_init(self, *args, **kwargs)
        captured = _thread_state.context
        if captured is ROOT_CONTEXT:
            return
        run = self.run

        @functools.wraps(run)
        def run_in_context() -> None:
            _thread_state.context = captured
            try:
                run()
            finally:
                _thread_state.context = ROOT_CONTEXT

        self.run = run_in_context  # type: ignore[method-assign]

    _original_thread_init = original_init
    threading.Thread.__init__ = __init__  # type: ignore[method-assign]
    return True


def uninstall_thread_hooks() -> None:
    """Restore ``threading.Thread``."""
    global _original_thread_init
    if _original_thread_init is not None:
        threading.Thread.__init__ = _original_thread_init  # type: ignore[method-assign]
        _original_thread_init = None


def thread_hooks_installed() -> bool:
    return _original_thread_init is not None


class BaseMechanism:
    """Shared enable/disable bookkeeping."""

    mechanism_id = "base"

    def __init__(self, logger: Any = None) -> None:
        self._logger = logger
        self._enabled = False

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def is_enabled(self) -> bool:
        return self._enabled

    def get_context(self) -> Any:
        if not self._enabled:
            return ROOT_CONTEXT
        return self._current()

    def enter(self, context: Any) -> Any:
        """Make ``context`` current; returns a token for ``exit``."""
        if not self._enabled:
            return _NOT_ENTERED
        return self._set(context)

    def exit(self, token: Any) -> None:
        """Restore the context that was current before ``enter``."""
        if token is not _NOT_ENTERED:
            self._reset(token)

    def run_with_context(self, fn: Callable[[], T], context: Any) -> T:
        if not self._enabled:
            return fn()
        token = self._set(context)
        try:
            return fn()
        finally:
            self._reset(token)

    def bind(self, fn: Callable[..., T]) -> Callable[..., T]:
        """Bind ``fn`` to the context current at bind time."""
        if not self._enabled:
            return fn
        context = self._current()

        @functools.wraps(fn)
        def bound(*args: Any, **kwargs: Any) -> T:
            return self.run_with_context(lambda: fn(*args, **kwargs), context)

        return bound

    def _current(self) -> Any:
        raise NotImplementedError

    def _set(self, context: Any) -> Any:
        raise NotImplementedError

    def _reset(self, token: Any) -> None:
        raise NotImplementedError


class ContextVarMechanism(BaseMechanism):
    """Native propagation through ``contextvars``."""

    mechanism_id = "contextvars"

    def _current(self) -> Any:
        return _trace_context.get()

    def _set(self, context: Any) -> Any:
        return _trace_context.set(context)

    def _reset(self, token: Any) -> None:
        _trace_context.reset(token)


class ThreadLocalMechanism(BaseMechanism):
    """Fallback propagation through a thread-local slot."""

    mechanism_id = "threadlocal"

    def enable(self) -> None:
        # normally already done at import; late installation only covers
        # threads created from now on
        if install_thread_hooks() and self._logger is not None:
            self._logger.warning(
                "Thread hooks installed after startup; "
                "threads created earlier will not propagate trace context"
            )
        super().enable()

    def disable(self) -> None:
        super().disable()
        _thread_state.context = ROOT_CONTEXT

    def _current(self) -> Any:
        return _thread_state.context

    def _set(self, context: Any) -> Any:
        previous = _thread_state.context
        _thread_state.context = context
        return previous

    def _reset(self, token: Any) -> None:
        _thread_state.context = token


class NoneMechanism(BaseMechanism):
    """No propagation: every lookup yields the root context."""

    mechanism_id = "none"

    def _current(self) -> Any:
        return ROOT_CONTEXT

    def _set(self, context: Any) -> Any:
        return None

    def _reset(self, token: Any) -> None:
        pass


MECHANISMS: Dict[str, Type[BaseMechanism]] = {
    ContextVarMechanism.mechanism_id: ContextVarMechanism,
    ThreadLocalMechanism.mechanism_id: ThreadLocalMechanism,
    NoneMechanism.mechanism_id: NoneMechanism,
}


def create_mechanism(logger: Any, mechanism_id: str) -> BaseMechanism:
    """
    Construct the mechanism named ``mechanism_id``.

    Raises:
        ValueError: unknown mechanism id
    """
    try:
        mechanism_cls = MECHANISMS[mechanism_id]
    except KeyError:
        raise ValueError(
            f"Unknown context propagation mechanism {mechanism_id!r}; "
            f"expected one of {sorted(MECHANISMS)}"
        ) from None
    if logger is not None:
        logger.debug("Context propagation mechanism created", mechanism=mechanism_id)
    return mechanism_cls(logger)
