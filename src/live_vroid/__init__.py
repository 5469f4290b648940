"""
Live-Vroid Bridge

Forwards avatar commands from MCP tool calls to a Godot scene over WebSocket:
1. Tool calls arrive over stdio
2. Free text is mapped to a clip, emotion and gaze target
3. Commands are sent to Godot and correlated with its responses
"""

__version__ = "1.0.0"
