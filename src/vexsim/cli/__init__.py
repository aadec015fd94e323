"""
cli: Typer CLI entry-point for vexsim.

Commands:
    violations  List the generated base violations
    techniques  Simulate each root transition on its own
    simulate    Simulate built-in or JSON targets
    graph       Derive the abstract technique graph
"""

from .app import app, main

__all__ = ["app", "main"]
