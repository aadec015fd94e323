"""
core.config: Centralised configuration management.

Loads settings from environment variables and .env files.
Every other module accesses configuration through ``Config``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

_env_loaded = False

_TRUTHY = ("1", "true", "yes")


def _load_dotenv() -> None:
    """Load .env from the project root and other standard paths.

    Search order:
        1. ``<project-root>/.env``  (two levels above ``src/vexsim``)
        2. ``src/vexsim/.env``
        3. ``$CWD/.env``
        4. ``~/.env``

    Values already present in the environment are never overridden.
    """
    global _env_loaded
    if _env_loaded:
        return

    _pkg_root = Path(__file__).resolve().parent.parent          # src/vexsim
    _project_root = _pkg_root.parent.parent                     # repository root

    search = [
        _project_root / ".env",
        _pkg_root / ".env",
        Path.cwd() / ".env",
        Path.home() / ".env",
    ]
    for p in search:
        if p.exists():
            load_dotenv(p, override=False)
    _env_loaded = True


def _env_flag(name: str) -> Optional[bool]:
    """Return the boolean value of ``name`` or ``None`` when unset."""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in _TRUTHY


class Config(BaseModel):
    """
    Global runtime configuration.

    Attributes are populated from environment variables / .env.
    Create via ``load_config()`` which pre-loads the env file.
    """

    # ── Simulation ───────────────────────────────────────────────────
    track_impossible: bool = Field(
        default=False,
        description="Record contexts whose exploitability dropped to 0.",
    )
    track_equivalent_only: bool = Field(
        default=False,
        description="Store only one representative per equivalence group.",
    )
    track_minimal_only: bool = Field(
        default=False,
        description="Store only minimal contexts.",
    )
    modes: List[str] = Field(
        default_factory=lambda: ["favor_attack"],
        description="Simulation modes (favor_attack, favor_defense, public_only, normal).",
    )
    assume_content_initialization_possible: bool = False

    # ── Output ───────────────────────────────────────────────────────
    output_dir: Optional[Path] = Field(
        default=None,
        description="Directory for JSON reports and GraphML exports.",
    )

    # ── Debug ────────────────────────────────────────────────────────
    debug: bool = False

    def apply(self, global_ctx: Any) -> None:
        """Copy the simulation switches onto a ``GlobalSimulationContext``."""
        # Imported lazily: core is imported by every other layer.
        from ..simulation.context import SimulationMode

        global_ctx.track_impossible = self.track_impossible
        global_ctx.track_equivalent_only = self.track_equivalent_only
        global_ctx.track_minimal_only = self.track_minimal_only
        global_ctx.assume_content_initialization_possible = self.assume_content_initialization_possible
        global_ctx.debug = self.debug
        global_ctx.modes = [SimulationMode.from_str(m) for m in self.modes]


def load_config(**overrides: object) -> Config:
    """
    Load ``Config`` from environment, applying optional overrides.

    Call this once at startup; pass the returned object to subsystems.
    """
    _load_dotenv()
    defaults: dict = {
        "debug": os.environ.get("VEXSIM_DEBUG", "").lower() in _TRUTHY,
    }
    track_all = _env_flag("VEXSIM_TRACK_ALL")
    if track_all is not None:
        defaults["track_impossible"] = track_all
    equivalent_only = _env_flag("VEXSIM_TRACK_EQUIVALENT_ONLY")
    if equivalent_only is not None:
        defaults["track_equivalent_only"] = equivalent_only
    modes_env = os.environ.get("VEXSIM_MODES")
    if modes_env:
        defaults["modes"] = [m.strip().lower() for m in modes_env.split(",") if m.strip()]
    output_env = os.environ.get("VEXSIM_OUTPUT_DIR")
    if output_env:
        defaults["output_dir"] = Path(output_env)
    defaults.update(overrides)
    return Config(**defaults)  # type: ignore[arg-type]
