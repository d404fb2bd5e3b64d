from __future__ import annotations

from typing import Any, Callable, Mapping

import structlog

from tripgen.domain.exceptions import compact_error
from tripgen.domain.reducer import Action, ReducerConfig, RunStarted, reduce
from tripgen.domain.state import OrchestrationState

logger = structlog.get_logger(__name__)

StateListener = Callable[[OrchestrationState], None]


class OrchestrationStore:
    """
    Holds the latest OrchestrationState. The reducer is the only writer;
    listeners are notified synchronously after every effective transition.
    """

    def __init__(self, config: ReducerConfig | None = None):
        self.config = config or ReducerConfig()
        self._state = OrchestrationState()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> OrchestrationState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def start_run(self, run_id: str, context: Mapping[str, Any]) -> OrchestrationState:
        self._set(reduce(OrchestrationState(), RunStarted(run_id=run_id, context=context), self.config))
        return self._state

    def clear(self) -> OrchestrationState:
        self._set(OrchestrationState())
        return self._state

    def dispatch(self, action: Action) -> OrchestrationState:
        if action.run_id != self._state.run_id:
            logger.debug(
                "stale_action_dropped",
                action=type(action).__name__,
                action_run_id=action.run_id,
                current_run_id=self._state.run_id,
            )
            return self._state

        new_state = reduce(self._state, action, self.config)
        if new_state is not self._state:
            self._set(new_state)
        return self._state

    def _set(self, state: OrchestrationState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.warning("state_listener_failed", error=compact_error(exc))
