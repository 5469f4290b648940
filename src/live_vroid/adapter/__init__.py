"""
Avatar Adapter

Typed avatar operations and the MCP tool surface built on them.
All socket handling lives in live_vroid.connection; this package only
shapes commands and renders results for the calling tool.
"""

from .avatar_adapter import AnimationStep, AvatarAdapter, CommandResult

__all__ = [
    "AnimationStep",
    "AvatarAdapter",
    "CommandResult",
]
