"""
core.log: Console output for vexsim.

``console`` is the shared stderr console.  ``debug_print`` writes the
``[DEBUG:<module>]`` trace lines the simulator emits for every taken
transition when ``GlobalSimulationContext.debug`` is set.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console(stderr=True)


def debug_print(module: str, msg: str, *, enabled: bool = True) -> None:
    """Print one trace line; ``msg`` is printed literally, never as markup."""
    if enabled:
        console.print(f"[dim]\\[DEBUG:{module}][/] {escape(msg)}", highlight=False, soft_wrap=True)
