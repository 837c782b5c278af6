"""
Decide which data source feeds the analysis views.

Two buttons – *Load data* and *Generate synthetic data* – each carry a click
counter.  On every evaluation the live counters are compared against the
last values this module has seen; the source whose counter moved wins and
only that source's canonical table is published.  When both moved since the
previous evaluation the file source wins and the synthetic click is served
on the next evaluation.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Tuple

import pandas as pd

from .io.loader import ParseFailure
from .mapping import MappingError

__all__ = [
    "Source",
    "TriggerState",
    "Publication",
    "decide",
    "ArbitrationController",
    "SessionControllers",
]

logger = logging.getLogger(__name__)

TableProvider = Callable[[], Optional[pd.DataFrame]]


class Source(str, Enum):
    FILE = "file"
    SYNTHETIC = "synthetic"


@dataclass(slots=True, frozen=True)
class TriggerState:
    """Click counts observed at the last evaluation."""

    last_load: int = 0
    last_syn: int = 0


@dataclass(slots=True, frozen=True)
class Publication:
    """
    Outcome of one evaluation.

    ``source`` is ``None`` when no counter moved.  ``table`` is ``None`` when
    nothing should reach the analysis views (no trigger, no file loaded, or
    a failure described by ``message``).
    """

    source: Source | None
    table: pd.DataFrame | None
    message: str | None
    state: TriggerState

    @property
    def failed(self) -> bool:
        return self.message is not None


def _count(value: int | None) -> int:
    # Dash reports ``None`` before the first click
    return int(value or 0)


def decide(
    state: TriggerState, load_count: int | None, syn_count: int | None
) -> Tuple[Source | None, TriggerState]:
    """Winning source (file checked first) and the advanced state."""
    load_count, syn_count = _count(load_count), _count(syn_count)
    if load_count != state.last_load:
        return Source.FILE, replace(state, last_load=load_count)
    if syn_count != state.last_syn:
        return Source.SYNTHETIC, replace(state, last_syn=syn_count)
    return None, state


class ArbitrationController:
    """
    Owns the :class:`TriggerState` and publishes at most one table per click.

    :meth:`publish` is the only way to read or advance the state; it runs
    under a lock so the compare-call-advance step never interleaves with a
    concurrent callback.
    """

    def __init__(self, state: TriggerState | None = None):
        self._state = state or TriggerState()
        self._lock = threading.Lock()

    @property
    def state(self) -> TriggerState:
        with self._lock:
            return self._state

    def publish(
        self,
        load_count: int | None,
        syn_count: int | None,
        load_file: TableProvider,
        load_synthetic: TableProvider,
    ) -> Publication:
        """
        Evaluate the counters and call the provider of the winning source.

        Mapping and parse failures are caught here: the publication carries
        no table and a message for the UI, and the winning counter is still
        advanced so the same click is never processed twice.
        """
        with self._lock:
            logger.debug(
                "Arbitration: load %s (last %s) · synthetic %s (last %s)",
                load_count,
                self._state.last_load,
                syn_count,
                self._state.last_syn,
            )
            source, new_state = decide(self._state, load_count, syn_count)
            if source is None:
                logger.debug("Arbitration: no new trigger")
                return Publication(None, None, None, self._state)

            provider = load_file if source is Source.FILE else load_synthetic
            table: pd.DataFrame | None = None
            message: str | None = None
            try:
                table = provider()
            except (MappingError, ParseFailure) as exc:
                message = str(exc)
                logger.warning("Arbitration: %s source failed – %s", source.value, exc)
            else:
                if table is None:
                    logger.info("Arbitration: %s source produced no table", source.value)
                else:
                    logger.info(
                        "Arbitration: publishing %d rows from %s source",
                        len(table),
                        source.value,
                    )
            finally:
                self._state = new_state

            return Publication(source, table, message, new_state)


class SessionControllers:
    """
    One long-lived :class:`ArbitrationController` per browser session.

    The trigger state lives here on the server, never in the browser, so
    two callbacks of the same session always compare against the same
    counters.  The least recently used sessions are dropped beyond
    *max_sessions*.
    """

    def __init__(self, max_sessions: int = 64):
        if max_sessions < 1:
            raise ValueError("max_sessions must be ≥ 1")
        self._controllers: OrderedDict[str, ArbitrationController] = OrderedDict()
        self._max_sessions = max_sessions
        self._lock = threading.Lock()

    def get(self, session_id: str) -> ArbitrationController:
        """Controller of *session_id*, created with fresh counters on first use."""
        if not session_id:
            raise ValueError("A session id is required")
        with self._lock:
            controller = self._controllers.get(session_id)
            if controller is not None:
                self._controllers.move_to_end(session_id)
                return controller

            controller = ArbitrationController()
            self._controllers[session_id] = controller
            logger.debug("Arbitration: new session %s", session_id)
            while len(self._controllers) > self._max_sessions:
                dropped, _ = self._controllers.popitem(last=False)
                logger.info("Arbitration: dropped idle session %s", dropped)
            return controller

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._controllers
