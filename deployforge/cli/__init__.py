"""deployforge CLI — Typer-based command-line interface.

Provides the ``deployforge`` command with subcommands for running the full
build → publish → deploy pipeline, building or deploying on their own, and
inspecting runs and service records.

All output uses Rich for formatted terminal display.
"""
