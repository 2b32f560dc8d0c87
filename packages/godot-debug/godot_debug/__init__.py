"""Godot .NET debug-session orchestration: select, build, launch, attach."""
