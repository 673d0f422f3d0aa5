"""Process-wide translation of interrupt signals into cooperative shutdown."""

from __future__ import annotations

import logging
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Protocol

logger = logging.getLogger(__name__)

SignalHandler = Callable[[int, Any], None]


class Closable(Protocol):
    def close(self) -> None: ...


class CancellationToken:
    """One-way flag: running until cancelled, never back."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "requested") -> bool:
        """Request cancellation; returns ``False`` if it was already requested."""

        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        return True


class SignalRegistry(Protocol):
    """Capability used to install and remove signal handlers."""

    def install(self, signum: int, handler: SignalHandler) -> object:
        """Install ``handler`` and return the previous handler."""

    def restore(self, signum: int, previous: object) -> None:
        """Put back a handler returned by :meth:`install`."""


class ProcessSignalRegistry:
    """Signal registry backed by :func:`signal.signal`."""

    def install(self, signum: int, handler: SignalHandler) -> object:
        previous = signal.getsignal(signum)
        signal.signal(signum, handler)
        return previous

    def restore(self, signum: int, previous: object) -> None:
        signal.signal(signum, previous)  # type: ignore[arg-type]


def default_signals() -> tuple[int, ...]:
    return tuple(
        int(value)
        for value in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None))
        if value is not None
    )


class CancellationCoordinator:
    """Sets the token, closes the active session and unhooks itself on a signal.

    Handlers are installed once per :meth:`activate` block and are always
    restored when the block exits, whether or not a signal arrived.
    """

    def __init__(
        self,
        token: CancellationToken | None = None,
        *,
        registry: SignalRegistry | None = None,
        signals: tuple[int, ...] | None = None,
    ) -> None:
        self.token = token or CancellationToken()
        self.registry = registry or ProcessSignalRegistry()
        self.signals = signals if signals is not None else default_signals()
        self._previous: dict[int, object] = {}
        self._session: Closable | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._active = False

    @contextmanager
    def activate(self, session: Closable | None = None) -> Iterator[CancellationToken]:
        if self._active:
            raise RuntimeError("Cancellation coordinator is already active.")
        self._active = True
        self._session = session
        try:
            for signum in self.signals:
                try:
                    self._previous[signum] = self.registry.install(signum, self._handle)
                except ValueError:
                    # Signal handlers can only be installed in main thread.
                    logger.debug("Cannot install handler for signal %d", signum)
            yield self.token
        finally:
            self._unregister()
            self._session = None
            self._callbacks.clear()
            self._active = False

    def track(self, session: Closable | None) -> None:
        """Make ``session`` the one closed when a signal arrives."""

        self._session = session

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` after the session is closed on a signal."""

        self._callbacks.append(callback)

    def _handle(self, signum: int, _frame: Any) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        self.token.cancel(name)
        logger.info("Received %s, shutting down after the current step", name)
        self._unregister()
        session = self._session
        if session is not None:
            session.close()
        for callback in list(self._callbacks):
            callback()

    def _unregister(self) -> None:
        while self._previous:
            signum, previous = self._previous.popitem()
            try:
                self.registry.restore(signum, previous)
            except ValueError:
                logger.debug("Cannot restore handler for signal %d", signum)
