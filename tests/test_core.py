import hashlib
import io
import json

from rich.console import Console

from vexsim.core import log
from vexsim.core.config import Config, load_config
from vexsim.core.fingerprint import compute_sha1
from vexsim.core.reporting import save_report, summarize_global_context
from vexsim.profiles.enums import MemoryAccessMethod
from vexsim.profiles.target import Target
from vexsim.simulation.context import GlobalSimulationContext, SimulationMode

_ENV_VARS = (
    "VEXSIM_DEBUG",
    "VEXSIM_TRACK_ALL",
    "VEXSIM_TRACK_EQUIVALENT_ONLY",
    "VEXSIM_MODES",
    "VEXSIM_OUTPUT_DIR",
)


def _clear_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_sha1_renders_none_as_empty():
    assert compute_sha1("a", None) == hashlib.sha1(b"a,,").hexdigest()
    assert compute_sha1("a", None) == compute_sha1("a", "")


def test_sha1_renders_enums_by_value():
    assert compute_sha1(MemoryAccessMethod.READ) == compute_sha1("read")
    assert compute_sha1("a", "b") != compute_sha1("b", "a")


def test_load_config_defaults(monkeypatch):
    _clear_env(monkeypatch)
    cfg = load_config()
    assert cfg.track_impossible is False
    assert cfg.modes == ["favor_attack"]
    assert cfg.output_dir is None


def test_load_config_reads_environment(monkeypatch, tmp_path):
    _clear_env(monkeypatch)
    monkeypatch.setenv("VEXSIM_TRACK_ALL", "yes")
    monkeypatch.setenv("VEXSIM_MODES", "Favor_Defense, normal")
    monkeypatch.setenv("VEXSIM_OUTPUT_DIR", str(tmp_path))
    monkeypatch.setenv("VEXSIM_DEBUG", "1")
    cfg = load_config()
    assert cfg.track_impossible is True
    assert cfg.modes == ["favor_defense", "normal"]
    assert cfg.output_dir == tmp_path
    assert cfg.debug is True


def test_overrides_win_over_environment(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("VEXSIM_TRACK_ALL", "1")
    assert load_config(track_impossible=False).track_impossible is False


def test_config_apply_sets_switches():
    global_ctx = GlobalSimulationContext(Target())
    Config(track_impossible=True, track_equivalent_only=True, modes=["favor_defense"], debug=True).apply(global_ctx)
    assert global_ctx.track_impossible is True
    assert global_ctx.track_equivalent_only is True
    assert global_ctx.debug is True
    assert global_ctx.modes == [SimulationMode.FAVOR_DEFENSE]


def test_save_report_envelope(tmp_path):
    path = save_report("graph", {"nodes": 3}, tmp_path / "out", metadata={"method": "write"})
    assert path == tmp_path / "out" / "graph_report.json"
    envelope = json.loads(path.read_text())
    assert envelope["vexsim_report"] is True
    assert envelope["version"] == "1.0"
    assert envelope["stage"] == "graph"
    assert envelope["metadata"] == {"method": "write"}
    assert envelope["data"] == {"nodes": 3}
    assert "generated_at" in envelope


def test_save_report_skipped_without_directory():
    assert save_report("graph", {}, None) is None


def test_summarize_empty_global_context():
    summary = summarize_global_context(GlobalSimulationContext(Target()))
    assert summary["simulation_count"] == 0
    assert summary["contexts"] == []
    assert summary["modes"] == ["favor_attack"]
    assert "exploitability" not in summary


def test_debug_print_is_literal(monkeypatch):
    buf = io.StringIO()
    monkeypatch.setattr(log, "console", Console(file=buf, width=200))
    log.debug_print("simulator", "took [bold]Transition[/bold]")
    log.debug_print("simulator", "hidden", enabled=False)
    assert buf.getvalue() == "[DEBUG:simulator] took [bold]Transition[/bold]\n"


def test_config_has_no_verbose_switch(monkeypatch):
    _clear_env(monkeypatch)
    assert "verbose" not in Config.model_fields
    assert not hasattr(load_config(), "verbose")
