from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AppState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class MicState(str, Enum):
    OFF = "off"
    STARTING = "starting"
    ON = "on"
    STOPPING = "stopping"


@dataclass
class MicStateTracker:
    state: MicState = MicState.OFF
    last_error: str | None = None

    @property
    def active(self) -> bool:
        return self.state in (MicState.STARTING, MicState.ON)

    def set_starting(self) -> bool:
        if self.state != MicState.OFF:
            return False
        self.state = MicState.STARTING
        self.last_error = None
        return True

    def set_on(self) -> None:
        if self.state == MicState.STARTING:
            self.state = MicState.ON

    def set_stopping(self) -> bool:
        if self.state == MicState.OFF:
            return False
        self.state = MicState.STOPPING
        return True

    def set_off(self) -> None:
        self.state = MicState.OFF

    def set_failed(self, detail: str) -> None:
        self.state = MicState.OFF
        self.last_error = detail
