"""Avatar command adapter."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..connection import BridgeError, GodotConnection
from ..intent import (
    DEFAULT_EMOTION,
    DEFAULT_LOOK_AT,
    AvatarCommand,
    parse_intent,
    validate_command,
)
from ..logger import log_command

logger = logging.getLogger(__name__)

AVATAR_CONTROL = "avatar_control"


@dataclass
class CommandResult:
    """Operation result."""

    success: bool
    message: str
    data: Any = None

    @property
    def is_error(self) -> bool:
        return not self.success


@dataclass
class AnimationStep:
    """One entry of an animation sequence. Delay is in milliseconds, applied before the step."""

    clip: str
    emotion: Optional[str] = None
    look_at: Optional[str] = None
    delay: float = 0

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AnimationStep":
        return cls(
            clip=raw["clip"],
            emotion=raw.get("emotion"),
            look_at=raw.get("lookAt"),
            delay=float(raw.get("delay") or 0),
        )

    def to_command(self) -> AvatarCommand:
        return AvatarCommand(
            clip=self.clip,
            emotion=self.emotion or DEFAULT_EMOTION,
            look_at=self.look_at or DEFAULT_LOOK_AT,
        )


def _describe_error(error: BaseException) -> str:
    message = str(error)
    return message or type(error).__name__


class AvatarAdapter:
    """
    Typed avatar operations on top of a GodotConnection.

    Every operation returns a CommandResult; failures are reported through
    ``success=False`` and an ``Error: ...`` message instead of raising.
    Dispatches share one lock so a running sequence is never interleaved
    with other commands.
    """

    def __init__(self, connection: GodotConnection):
        self.connection = connection
        self._dispatch_lock = asyncio.Lock()

    async def control_avatar(
        self,
        clip: str,
        emotion: str = DEFAULT_EMOTION,
        look_at: str = DEFAULT_LOOK_AT,
    ) -> CommandResult:
        """Play a clip with an emotion and gaze target."""
        command = AvatarCommand(clip=clip, emotion=emotion, look_at=look_at)
        result = await self.send_command(command)
        if result.success:
            result.message = f"Avatar updated: {command.describe()}"
        return result

    async def animate_from_text(self, text: str) -> CommandResult:
        """Interpret free text and send the resulting command."""
        command = parse_intent(text)
        result = await self.send_command(command)
        if result.success:
            result.message = f'Interpreted "{text}" as: {command.describe()}'
        return result

    async def send_command(self, command: AvatarCommand) -> CommandResult:
        """Send one command and wait for Godot to acknowledge it."""
        async with self._dispatch_lock:
            return await self._dispatch(command)

    async def _dispatch(self, command: AvatarCommand) -> CommandResult:
        params = command.to_params()
        start = time.monotonic()
        try:
            validate_command(command)
            data = await self.connection.send_request(AVATAR_CONTROL, params)
        except (BridgeError, ValueError) as e:
            duration_ms = (time.monotonic() - start) * 1000
            log_command(AVATAR_CONTROL, params, duration_ms, False, _describe_error(e))
            return CommandResult(success=False, message=f"Error: {_describe_error(e)}")
        except Exception as e:
            logger.exception(f"Unexpected error dispatching {AVATAR_CONTROL}")
            return CommandResult(success=False, message=f"Error: Unexpected error: {_describe_error(e)}")

        duration_ms = (time.monotonic() - start) * 1000
        log_command(AVATAR_CONTROL, params, duration_ms, True)
        return CommandResult(success=True, message=f"Sent: {command.describe()}", data=data)

    async def fire_and_forget(self, command: AvatarCommand) -> CommandResult:
        """Send a raw avatar command without expecting a response."""
        message = {
            "clip": command.clip,
            "emotion": command.emotion,
            "lookAt": command.look_at,
            "timestamp": int(time.time() * 1000),
        }
        async with self._dispatch_lock:
            try:
                validate_command(command)
                await self.connection.send_message(message)
            except (BridgeError, ValueError) as e:
                logger.warning(f"Avatar command not sent: {e}")
                return CommandResult(success=False, message=f"Error: {_describe_error(e)}")

        logger.debug(f"Sent avatar command: {message}")
        return CommandResult(success=True, message=f"Sent avatar command: {command.describe()}")

    async def run_sequence(self, steps: Sequence[AnimationStep]) -> CommandResult:
        """Play animation steps in order, honoring each step's delay.

        The first failing step aborts the rest of the sequence.
        """
        if not steps:
            return CommandResult(success=False, message="Error: Animation sequence is empty")

        for index, step in enumerate(steps, start=1):
            if not isinstance(step.delay, (int, float)) or step.delay < 0:
                return CommandResult(
                    success=False,
                    message=f"Error: Invalid delay at step {index} ({step.clip}): {step.delay!r}",
                )

        trace: List[str] = []
        async with self._dispatch_lock:
            for index, step in enumerate(steps, start=1):
                if step.delay > 0:
                    await asyncio.sleep(step.delay / 1000)

                command = step.to_command()
                result = await self._dispatch(command)
                if not result.success:
                    reason = result.message.removeprefix("Error: ")
                    done = f" after: {' → '.join(trace)}" if trace else ""
                    return CommandResult(
                        success=False,
                        message=f"Error: Sequence failed at step {index} ({command.clip}): {reason}{done}",
                        data={"completed": len(trace), "failed_step": index},
                    )
                trace.append(f"{command.clip} ({command.emotion})")

        return CommandResult(
            success=True,
            message=f"Executed animation sequence: {' → '.join(trace)}",
            data={"completed": len(trace)},
        )

    def status(self) -> CommandResult:
        """Connection status snapshot."""
        status = self.connection.get_status()
        state = "connected" if status["connected"] else "disconnected"
        return CommandResult(
            success=True,
            message=f"Godot {state} at {status['url']} ({status['pendingCommands']} pending commands)",
            data=status,
        )
