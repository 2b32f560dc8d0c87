"""MCP front end for the Godot debug pipeline."""
