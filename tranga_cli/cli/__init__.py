"""CLI command modules for Tranga.

Each module exposes a Typer ``app`` registered as a command group by
:mod:`tranga_cli.main`.
"""
