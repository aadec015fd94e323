"""
vexsim: Exploitation state-machine simulator.

Models exploitation as traversal of a non-deterministic state machine whose
states are memory-safety violations and whose transitions are exploitation
techniques.  Given a target (hardware / OS / application invariants and an
initial violation) the simulator explores every reachable technique chain
and estimates how likely each one is to succeed.

Architecture:
    core/         Configuration, logging, errors, fingerprints, JSON reports
    profiles/     Enumerations, Violation, Target profiles, built-in samples
    simulation/   Assumptions, transitions, contexts, simulator, registry
    techniques/   Exploitation primitives and the technique catalog
    cli/          Typer CLI entry-points
"""

__version__ = "0.2.0"
