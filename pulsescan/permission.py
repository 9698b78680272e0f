import asyncio
import logging
from typing import NamedTuple, Optional

from pulseutils.app import PermissionState

_logger = logging.getLogger(__name__)

RATIONALE = "We need camera permission to measure your heart rate."
SETTINGS_HINT = "Camera access was denied. Enable it in the system settings ('pulsescan permission reset')."


class PermissionPrompt(NamedTuple):
    message: str
    action: Optional[str]  # None, "grant" or "open_settings"


async def ask_terminal(question) -> str:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, input, question)
    except EOFError:
        return ""


class ConfigPermissions:
    """Desktop stand-in for the platform's camera permission: the answer is kept in the config file."""

    def __init__(self, config, ask=ask_terminal, on_change=None) -> None:
        self.config = config
        self.ask = ask
        self.on_change = on_change

    def check(self) -> PermissionState:
        try:
            return PermissionState[self.config.get("camera_permission") or "UNDETERMINED"]
        except KeyError:
            return PermissionState.UNDETERMINED

    async def request(self, answer=None) -> PermissionState:
        """Ask for the camera. `answer` comes from a kiosk front end; without one the terminal is asked."""
        state = self.check()
        # The platform never asks again once the user has granted or permanently refused
        if state in [PermissionState.GRANTED, PermissionState.DENIED_PERMANENTLY]:
            return state

        if answer is None:
            answer = await self.ask(f"{RATIONALE} Allow camera access? [y/n/never] ")
        answer = answer.strip().lower()
        if answer in ["y", "yes", "allow"]:
            state = PermissionState.GRANTED
        elif answer in ["never", "never ask again"]:
            state = PermissionState.DENIED_PERMANENTLY
        else:
            state = PermissionState.DENIED_RETRIABLE
        self._set(state)
        return state

    def reset(self) -> None:
        self._set(PermissionState.UNDETERMINED)

    def _set(self, state) -> None:
        self.config["camera_permission"] = state.name
        _logger.info("Camera permission is now %s", state.name)
        if self.on_change is not None:
            self.on_change(self.config)


class PermissionGate:
    def __init__(self, capture) -> None:
        self.capture = capture
        self.state = PermissionState.UNDETERMINED

    def check_permission(self) -> PermissionState:
        self.state = self.capture.check_permission()
        return self.state

    async def request_permission(self, answer=None) -> PermissionState:
        self.state = await self.capture.request_permission(answer)
        return self.state

    async def enter(self) -> PermissionState:
        """Runs when the pulse screen is shown: an undecided permission is asked for straight away."""
        if self.check_permission() == PermissionState.UNDETERMINED:
            await self.request_permission()
        return self.state

    async def grant(self, answer=None) -> PermissionState:
        if self.check_permission() == PermissionState.DENIED_PERMANENTLY:
            return self.state
        return await self.request_permission(answer)

    def prompt(self) -> PermissionPrompt:
        if self.state == PermissionState.GRANTED:
            return PermissionPrompt("", None)
        if self.state == PermissionState.DENIED_PERMANENTLY:
            return PermissionPrompt(SETTINGS_HINT, "open_settings")
        return PermissionPrompt(RATIONALE, "grant")
