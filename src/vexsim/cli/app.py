"""
cli.app: Main Typer application.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..core.config import Config, load_config
from ..core.errors import VexsimError
from ..core.reporting import save_report, summarize_global_context, summarize_simulation

app = typer.Typer(
    name="vexsim",
    help="Exploitation state-machine simulator over abstract memory-safety violations.",
    no_args_is_help=True,
)
console = Console()


# ── Shared helpers ────────────────────────────────────────────────────


def _build_config(**cli_overrides: object) -> Config:
    """Build a ``Config`` from .env + CLI overrides, dropping None values."""
    return load_config(**{k: v for k, v in cli_overrides.items() if v is not None})


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/]")
    raise typer.Exit(1)


def _all_or(symbol: Optional[str], registry: dict, lookup):
    if symbol:
        return [lookup(symbol)]
    return [build() for build in registry.values()]


# ═════════════════════════════════════════════════════════════════════
#  Violations
# ═════════════════════════════════════════════════════════════════════


@app.command()
def violations(
    props: bool = typer.Option(False, "--props", help="Show the state of every access parameter"),
) -> None:
    """List the generated base violations."""
    from ..profiles.violation import generate_base_violations

    base = generate_base_violations()
    table = Table(title="Base violations", show_header=True, header_style="bold")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Symbol")
    if props:
        for column in ("Method", "Base", "Content", "Displacement", "Extent"):
            table.add_column(column)

    for i, v in enumerate(base, 1):
        row = [str(i), v.symbol]
        if props:
            row += [
                v.method.value,
                v.base_state.value,
                v.content_src_state.value,
                v.displacement_state.value,
                v.extent_state.value,
            ]
        table.add_row(*row)
    console.print(table)
    console.print(f"Total: {len(base)} violations")


# ═════════════════════════════════════════════════════════════════════
#  Techniques
# ═════════════════════════════════════════════════════════════════════


@app.command()
def techniques(
    technique: Optional[str] = typer.Option(None, "--technique", "-t", help="Only simulate this technique symbol"),
    output_dir: Optional[str] = typer.Option(None, "--output-dir", "-o", help="Directory for JSON reports"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output"),
) -> None:
    """Simulate every root transition from a fully controlled violation."""
    from ..profiles.enums import MemoryAccessParameterState
    from ..profiles.target import Target
    from ..profiles.violation import Violation
    from ..simulation import GlobalSimulationContext, Simulation, Simulator

    cfg = _build_config(debug=debug or None, output_dir=Path(output_dir) if output_dir else None)
    simulation = Simulation.all_techniques()
    roots = [
        t for t in simulation.root_transitions
        if not t.primitive.is_identity and (technique is None or t.technique.symbol == technique)
    ]
    if not roots:
        _fail(f"No root transitions for technique '{technique}'.")

    controlled = MemoryAccessParameterState.CONTROLLED
    table = Table(title="Technique simulations", show_header=True, header_style="bold")
    table.add_column("Technique")
    table.add_column("Root transition", max_width=60)
    table.add_column("From", justify="center")
    table.add_column("Paths", justify="right")
    table.add_column("Max exploitability", justify="right")

    for i, root in enumerate(roots, 1):
        violation = Violation(
            method=root.primitive.from_method,
            base_state=controlled,
            content_src_state=controlled,
            content_dst_state=controlled,
            displacement_state=controlled,
            extent_state=controlled,
        )
        global_ctx = GlobalSimulationContext.from_config(Target(violation=violation), cfg)
        simulator = Simulator.create_desired_code_execution_simulator(simulation, global_ctx)
        simulator.restrict_to_root_transitions([root])
        try:
            simulator.run()
        except VexsimError as exc:
            _fail(f"Simulation of '{root}' failed: {exc}")

        completed = global_ctx.completed_simulation_contexts
        best = max((c.exploitability for c in completed), default=0.0)
        table.add_row(
            root.technique.symbol,
            root.label,
            violation.method.abbreviation,
            str(global_ctx.simulation_count),
            f"{best:.6g}",
        )
        save_report(
            "techniques",
            summarize_global_context(global_ctx),
            cfg.output_dir,
            filename=f"technique_{i:03d}_{root.technique.symbol}_report.json",
            metadata={"technique": root.technique.symbol, "transition": root.label},
        )

    console.print(table)


# ═════════════════════════════════════════════════════════════════════
#  Simulate
# ═════════════════════════════════════════════════════════════════════


@app.command()
def simulate(
    violation: Optional[str] = typer.Option(None, "--violation", "-v", help="Built-in violation (default: all)"),
    operating_system: Optional[str] = typer.Option(None, "--os", help="Built-in operating system (default: all)"),
    application: Optional[str] = typer.Option(None, "--app", help="Built-in application (default: all)"),
    hardware: Optional[str] = typer.Option(None, "--hardware", help="Built-in hardware (default: all)"),
    target_file: Optional[str] = typer.Option(None, "--target-file", "-f", help="JSON target document"),
    track_all: bool = typer.Option(False, "--track-all", help="Also record impossible paths"),
    mode: Optional[List[str]] = typer.Option(None, "--mode", "-m", help="Simulation mode (repeatable)"),
    output_dir: Optional[str] = typer.Option(None, "--output-dir", "-o", help="Directory for JSON reports"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output"),
) -> None:
    """Run the desired-code-execution simulator over one or more targets."""
    from ..profiles import builtin
    from ..profiles.target import create_targets, load_target
    from ..simulation import GlobalSimulationContext, Simulation, Simulator

    cfg = _build_config(
        track_impossible=track_all or None,
        modes=[m.lower() for m in mode] if mode else None,
        output_dir=Path(output_dir) if output_dir else None,
        debug=debug or None,
    )

    try:
        if target_file:
            path = Path(target_file)
            if not path.exists():
                _fail(f"Not found: {path}")
            targets = [load_target(path)]
        else:
            targets = create_targets(
                _all_or(hardware, builtin.HARDWARE, builtin.get_hardware),
                _all_or(operating_system, builtin.OPERATING_SYSTEMS, builtin.get_operating_system),
                _all_or(application, builtin.APPLICATIONS, builtin.get_application),
                _all_or(violation, builtin.VIOLATIONS, builtin.get_violation),
            )
        simulation = Simulation.all_techniques()
    except (KeyError, ValueError, VexsimError) as exc:
        _fail(str(exc).strip("'\""))

    if not targets:
        _fail("No compatible hardware / operating system / application combination.")

    for i, target in enumerate(targets, 1):
        try:
            global_ctx = GlobalSimulationContext.from_config(target, cfg)
            simulator = Simulator.create_desired_code_execution_simulator(simulation, global_ctx)
            simulator.run()
        except (ValueError, VexsimError) as exc:
            _fail(f"Simulation failed: {exc}")

        console.print(f"\n[bold]═══ Target {i}/{len(targets)} ═══[/]")
        console.print(global_ctx.description, markup=False, highlight=False)
        save_report(
            "simulation",
            summarize_global_context(global_ctx),
            cfg.output_dir,
            filename=f"simulation_{i:03d}_report.json",
            metadata={
                "hardware": target.hardware.symbol,
                "operating_system": target.operating_system.symbol,
                "application": target.application.symbol,
                "violation": target.violation.name,
            },
        )


# ═════════════════════════════════════════════════════════════════════
#  Graph
# ═════════════════════════════════════════════════════════════════════


@app.command()
def graph(
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write the abstract graph as GraphML"),
    method: Optional[str] = typer.Option(None, "--method", help="Only list chains starting from read / write / execute"),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help="Directory for the JSON report"),
) -> None:
    """Derive the abstract technique graph for the full catalog."""
    from ..profiles.enums import MemoryAccessMethod
    from ..simulation import Simulation

    try:
        methods = [MemoryAccessMethod.from_str(method)] if method else list(MemoryAccessMethod)
    except ValueError as exc:
        _fail(str(exc))

    simulation = Simulation.all_techniques()
    g = simulation.complete_graph
    console.print(f"  Transitions: {len(simulation.transitions)}")
    console.print(f"  Nodes:       {g.number_of_nodes()}")
    console.print(f"  Edges:       {g.number_of_edges()}")

    table = Table(title="Transition chains", show_header=True, header_style="bold")
    table.add_column("From", justify="center")
    table.add_column("Chain")
    table.add_column("Technique")
    table.add_column("First step", max_width=60)
    for m in methods:
        for chain in simulation.get_transition_chains(m):
            primitive = chain.primitive
            table.add_row(
                m.abbreviation,
                chain.chain_descriptor,
                chain.technique.symbol if chain.technique else "-",
                primitive.name if primitive else "-",
            )
    console.print(table)

    if output:
        simulation.save_graphml(Path(output))
    if report_dir:
        save_report("graph", summarize_simulation(simulation), Path(report_dir))


def main() -> None:
    """Entry-point registered in pyproject.toml."""
    app()
