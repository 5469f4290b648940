"""
MCP Server

Exposes the avatar operations as MCP tools over stdio.
Tool calls go through the AvatarAdapter to the Godot connection; the
connection is created once at startup and closed on shutdown.
"""

import argparse
import asyncio
import logging
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .. import __version__
from ..config import BridgeConfig
from ..connection import BridgeError, GodotConnection
from ..intent import ANIMATIONS, EMOTIONS, LOOK_TARGETS, AvatarCommand
from ..logger import configure_logging, log_shutdown, log_startup
from .avatar_adapter import AnimationStep, AvatarAdapter, CommandResult

logger = logging.getLogger(__name__)

SERVER_NAME = "live-vroid-mcp"

_AVATAR_PROPERTIES = {
    "clip": {
        "type": "string",
        "enum": list(ANIMATIONS),
        "description": "Animation clip to play",
        "default": "idle",
    },
    "emotion": {
        "type": "string",
        "enum": list(EMOTIONS),
        "description": "Facial expression",
        "default": "neutral",
    },
    "lookAt": {
        "type": "string",
        "enum": list(LOOK_TARGETS),
        "description": "Where to look",
        "default": "user",
    },
}

TOOLS = [
    Tool(
        name="control_avatar",
        description="Control the VRoid avatar's animation, emotion, and gaze",
        inputSchema={"type": "object", "properties": _AVATAR_PROPERTIES},
    ),
    Tool(
        name="animate_from_text",
        description="Automatically parse text to control avatar based on context and emotion",
        inputSchema={
            "type": "object",
            "properties": {
                "text": {
                    "type": "string",
                    "description": "Natural language describing action, emotion, or both",
                },
            },
            "required": ["text"],
        },
    ),
    Tool(
        name="sequence_animations",
        description="Play a sequence of animations with timing",
        inputSchema={
            "type": "object",
            "properties": {
                "sequence": {
                    "type": "array",
                    "description": "Array of animation commands with optional delays",
                    "items": {
                        "type": "object",
                        "properties": {
                            "clip": {"type": "string", "enum": list(ANIMATIONS)},
                            "emotion": {"type": "string", "enum": list(EMOTIONS)},
                            "lookAt": {"type": "string", "enum": list(LOOK_TARGETS)},
                            "delay": {
                                "type": "number",
                                "minimum": 0,
                                "description": "Delay in ms before this animation",
                            },
                        },
                        "required": ["clip"],
                    },
                },
            },
            "required": ["sequence"],
        },
    ),
    Tool(
        name="send_avatar_command",
        description="Send an avatar command without waiting for Godot to acknowledge it",
        inputSchema={"type": "object", "properties": _AVATAR_PROPERTIES},
    ),
    Tool(
        name="avatar_status",
        description="Report whether the Godot avatar scene is connected and how many commands are pending",
        inputSchema={"type": "object", "properties": {}},
    ),
]


class ToolCallError(Exception):
    """Raised inside the MCP handler so the SDK marks the result as an error."""

    pass


def _command_from_arguments(arguments: Dict[str, Any]) -> AvatarCommand:
    return AvatarCommand(
        clip=arguments.get("clip") or "idle",
        emotion=arguments.get("emotion") or "neutral",
        look_at=arguments.get("lookAt") or "user",
    )


async def call_tool(adapter: AvatarAdapter, name: str, arguments: Dict[str, Any]) -> CommandResult:
    """Route a tool call to the adapter.

    Args:
        adapter: Avatar adapter bound to the process-wide connection
        name: Tool name
        arguments: Tool arguments as sent by the client

    Returns:
        The adapter result, or an error result for unknown tools or bad arguments
    """
    if name == "control_avatar":
        command = _command_from_arguments(arguments)
        return await adapter.control_avatar(command.clip, command.emotion, command.look_at)

    if name == "animate_from_text":
        text = arguments.get("text")
        if not isinstance(text, str):
            return CommandResult(success=False, message="Error: 'text' must be a string")
        return await adapter.animate_from_text(text)

    if name == "sequence_animations":
        raw_steps = arguments.get("sequence")
        if not isinstance(raw_steps, list):
            return CommandResult(success=False, message="Error: 'sequence' must be an array")
        try:
            steps = [AnimationStep.from_dict(raw) for raw in raw_steps]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            return CommandResult(success=False, message=f"Error: Invalid sequence step: {e}")
        return await adapter.run_sequence(steps)

    if name == "send_avatar_command":
        return await adapter.fire_and_forget(_command_from_arguments(arguments))

    if name == "avatar_status":
        return adapter.status()

    available = ", ".join(tool.name for tool in TOOLS)
    return CommandResult(success=False, message=f"Error: Unknown tool: {name} (available: {available})")


def create_server(adapter: AvatarAdapter) -> Server:
    """Create and configure the MCP server."""
    server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return TOOLS

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
        result = await call_tool(adapter, name, arguments or {})
        if result.is_error:
            raise ToolCallError(result.message)
        return [TextContent(type="text", text=result.message)]

    return server


async def run_server(config: BridgeConfig):
    """Run the MCP server over stdio until the client goes away.

    Args:
        config: Bridge configuration
    """
    connection = GodotConnection(
        config.endpoint(),
        policy=config.retry_policy(),
        heartbeat_interval=config.heartbeat_interval,
    )
    adapter = AvatarAdapter(connection)
    server = create_server(adapter)

    connect_task: Optional[asyncio.Task] = None
    try:
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Live-Vroid MCP Server ready")
            connect_task = asyncio.create_task(_initial_connect(connection))
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        if connect_task is not None:
            connect_task.cancel()
            await asyncio.gather(connect_task, return_exceptions=True)
        await connection.disconnect()


async def _initial_connect(connection: GodotConnection):
    """Open the Godot connection while the MCP server is already serving."""
    try:
        await connection.connect()
        logger.info("Successfully connected to Godot WebSocket server")
    except BridgeError as e:
        logger.warning(f"Could not connect to Godot: {e}")
        logger.warning("Will retry connection when commands are executed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live-Vroid MCP bridge to a Godot avatar scene")
    parser.add_argument(
        "--url",
        help="Godot WebSocket URL (default: $GODOT_WS_URL or ws://localhost:8080)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-command timeout in seconds",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        help="Connection retries after the first attempt",
    )
    parser.add_argument(
        "--retry-delay",
        type=float,
        help="Delay between connection attempts in seconds",
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for the rotating log file",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level",
    )
    return parser


def load_config(argv: Optional[List[str]] = None) -> BridgeConfig:
    """Environment first, command line overrides."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = BridgeConfig.from_env()

    if args.url:
        config.server_url = args.url
    if args.timeout is not None:
        config.command_timeout = args.timeout
    if args.max_retries is not None:
        config.max_retries = args.max_retries
    if args.retry_delay is not None:
        config.retry_delay = args.retry_delay
    if args.log_dir:
        config.log_dir = args.log_dir
    if args.log_level:
        config.log_level = args.log_level

    try:
        config.endpoint()
        config.retry_policy()
    except ValueError as e:
        parser.error(str(e))
    return config


def main(argv: Optional[List[str]] = None):
    """CLI entry point for running the bridge."""
    config = load_config(argv)
    configure_logging(config.log_dir, config.log_level)
    log_startup(config.server_url, __version__)

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        log_shutdown()


if __name__ == "__main__":
    main()
