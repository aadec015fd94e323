"""
core.reporting: Structured JSON report persistence.

Provides helpers to turn simulation results (completed contexts, the
abstract technique graph, transition chains) into plain dictionaries and
to write them to disk for later review.

All reports use a standard JSON *envelope*::

    {
        "vexsim_report": true,
        "version": "1.0",
        "stage": "<component>",
        "generated_at": "2025-…",
        "metadata": { … },
        "data": { … }
    }
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .log import console


# ── Envelope builder ──────────────────────────────────────────────────


def _report_envelope(
    stage: str,
    data: Any,
    *,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Wrap component data in a standard envelope with timestamp + metadata."""
    envelope: Dict[str, Any] = {
        "vexsim_report": True,
        "version": "1.0",
        "stage": stage,
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }
    if metadata:
        envelope["metadata"] = metadata

    if isinstance(data, BaseModel):
        envelope["data"] = data.model_dump(mode="json")
    elif isinstance(data, dict):
        envelope["data"] = data
    elif isinstance(data, list):
        envelope["data"] = [
            item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            for item in data
        ]
    else:
        envelope["data"] = str(data)

    return envelope


# ── Report saving ─────────────────────────────────────────────────────


def save_report(
    stage: str,
    data: Any,
    work_dir: Optional[Path],
    *,
    filename: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[Path]:
    """
    Save a report for a single component as JSON.

    Parameters
    ----------
    stage:
        Component name: ``"simulation"``, ``"techniques"``, ``"graph"``.
    data:
        A Pydantic ``BaseModel``, dict, or list to serialize.
    work_dir:
        Output directory.  If ``None`` the report is silently skipped.
    filename:
        Custom filename.  Defaults to ``"{stage}_report.json"``.
    metadata:
        Extra metadata to include in the envelope (e.g. target symbols).

    Returns
    -------
    Path to the written file, or ``None`` if *work_dir* was unset.
    """
    if work_dir is None:
        return None

    work_dir = Path(work_dir)
    work_dir.mkdir(parents=True, exist_ok=True)

    fname = filename or f"{stage}_report.json"
    path = work_dir / fname

    envelope = _report_envelope(stage, data, metadata=metadata)
    path.write_text(json.dumps(envelope, indent=2, default=str))

    console.print(f"  [dim]📄 Report saved: {path}[/]")
    return path


# ── Summaries ─────────────────────────────────────────────────────────


def summarize_context(ctx: Any) -> Dict[str, Any]:
    """Convert one ``SimulationContext`` into a JSON-able dict."""
    return {
        "exploitability": ctx.exploitability,
        "failed": ctx.failed,
        "failure_reason": ctx.failure_reason,
        "invariant_equivalence_class": ctx.invariant_equivalence_class,
        "transitions": [
            {
                "pre": str(info.pre_violation),
                "transition": info.transition.label,
                "technique": info.transition.technique.symbol,
                "post": str(info.post_violation) if info.post_violation is not None else None,
            }
            for info in ctx.visited_transitions
        ],
        "assumptions": [
            {
                "id": a.id,
                "name": a.name_string,
                "probability": a.probability,
                "transition": a.transition.label if a.transition is not None else "invariant",
            }
            for a in sorted(ctx.assumptions.values(), key=lambda x: x.id)
        ],
    }


def summarize_global_context(global_ctx: Any) -> Dict[str, Any]:
    """
    Convert a ``GlobalSimulationContext`` into a JSON-able dict.

    Contexts are ordered by exploitability, highest first.
    """
    contexts = list(global_ctx.completed_simulation_contexts)
    values = [c.exploitability for c in contexts]
    summary: Dict[str, Any] = {
        "simulation_count": global_ctx.simulation_count,
        "stored_count": len(contexts),
        "modes": [m.value for m in global_ctx.modes],
        "violation": str(global_ctx.target.violation),
        "initial_assumptions": [
            {"name": a.name_string, "probability": a.probability}
            for a in global_ctx.target.initial_assumptions
        ],
        "contexts": [
            summarize_context(c)
            for c in sorted(contexts, key=lambda x: x.exploitability, reverse=True)
        ],
    }
    if values:
        summary["exploitability"] = {
            "avg": sum(values) / len(values),
            "max": max(values),
            "min": min(values),
        }
    return summary


def summarize_simulation(simulation: Any) -> Dict[str, Any]:
    """Convert the abstract graph and transition chains of a ``Simulation``."""
    graph = simulation.complete_graph
    chains: Dict[str, List[Dict[str, Any]]] = {}
    for method, method_chains in simulation.transition_chains.items():
        chains[method.value] = [
            {
                "descriptor": chain.chain_descriptor,
                "technique": chain.technique.symbol if chain.technique else None,
                "steps": [info.transition.label for info in chain.transitions],
            }
            for chain in method_chains
        ]
    return {
        "transition_count": len(simulation.transitions),
        "node_count": graph.number_of_nodes(),
        "edge_count": graph.number_of_edges(),
        "edges": [
            {
                "pre": graph.nodes[u].get("symbol", u),
                "post": graph.nodes[v].get("symbol", v),
                "label": data.get("label"),
                "technique": data.get("technique"),
            }
            for u, v, data in graph.edges(data=True)
        ],
        "chains": chains,
    }
