"""Explicit component lifecycle states."""

from __future__ import annotations

from enum import Enum

from vault_sync.core.errors import ComponentNotReadyError


class ComponentState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


class Lifecycle:
    """Mixin tracking a component's lifecycle state."""

    state: ComponentState = ComponentState.UNINITIALIZED

    @property
    def is_ready(self) -> bool:
        return self.state is ComponentState.READY

    def _set_state(self, state: ComponentState) -> None:
        self.state = state

    def require_ready(self) -> None:
        if self.state is not ComponentState.READY:
            raise ComponentNotReadyError(f"{type(self).__name__} is {self.state.value}")


__all__ = ["ComponentState", "Lifecycle"]
