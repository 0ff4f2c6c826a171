from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import pystache
import yaml

DEFAULT_SENTINEL = "__orb_babel_eoe__"


@dataclass(frozen=True)
class InterpreterProfile:
    """How to talk to one interpreter: commands, prompt shape and the Mustache templates."""
    name: str
    command: Tuple[str, ...]
    repl_command: Tuple[str, ...]
    sentinel_template: str
    wrapper_template: str
    prompt: Optional[str] = None
    echo: bool = False


RAKU = InterpreterProfile(
    name="raku",
    command=("raku", "-"),
    repl_command=("raku", "--repl-mode=interactive"),
    sentinel_template='say "{{sentinel}}";',
    # Map-like results travel in gist form; everything else as its .raku literal.
    wrapper_template=(
        "sub main {\n"
        "{{body}}\n"
        "}\n"
        "my $result = main();\n"
        'spurt {{quoted_path}}, ($result ~~ Associative ?? $result.gist !! $result.raku) ~ "\\n";\n'
    ),
    prompt=r"\[\d+\] > |> ",
)

BUILTIN_PROFILES: Dict[str, InterpreterProfile] = {RAKU.name: RAKU}


@dataclass
class EvalConfig:
    profile: InterpreterProfile = RAKU
    timeout: float = 30.0
    poll_interval: float = 0.05
    sentinel: str = DEFAULT_SENTINEL
    profiles: Dict[str, InterpreterProfile] = field(default_factory=lambda: dict(BUILTIN_PROFILES))


def render_template(template: str, **context: Any) -> str:
    """Render a Mustache template without HTML escaping."""
    renderer = pystache.Renderer(escape=lambda u: u)
    return renderer.render(template, context)


def _as_command(value) -> Tuple[str, ...]:
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(str(v) for v in value)


def profile_from_dict(name: str, raw: Dict[str, Any], base: InterpreterProfile) -> InterpreterProfile:
    """Build a profile from a YAML mapping; missing keys come from `base`."""
    changes: Dict[str, Any] = {"name": name}
    if "command" in raw:
        changes["command"] = _as_command(raw["command"])
    if "repl-command" in raw:
        changes["repl_command"] = _as_command(raw["repl-command"])
    if "sentinel-template" in raw:
        changes["sentinel_template"] = str(raw["sentinel-template"])
    if "wrapper-template" in raw:
        changes["wrapper_template"] = str(raw["wrapper-template"])
    if "prompt" in raw:
        changes["prompt"] = raw["prompt"] or None
    if "echo" in raw:
        changes["echo"] = bool(raw["echo"])
    return replace(base, **changes)


def config_from_dict(raw: Optional[Dict[str, Any]]) -> EvalConfig:
    cfg = dict(raw or {})
    profiles = dict(BUILTIN_PROFILES)
    for name, spec in (cfg.get("profiles") or {}).items():
        spec = dict(spec or {})
        base_name = spec.get("base", "raku")
        if base_name not in profiles:
            raise KeyError(f"unknown base profile {base_name!r} for {name!r}")
        profiles[name] = profile_from_dict(name, spec, profiles[base_name])

    profile_name = cfg.get("profile", "raku")
    if profile_name not in profiles:
        raise KeyError(f"unknown interpreter profile {profile_name!r}")

    config = EvalConfig(profile=profiles[profile_name], profiles=profiles)
    if "timeout" in cfg:
        config.timeout = float(cfg["timeout"])
    if "poll-interval" in cfg:
        config.poll_interval = float(cfg["poll-interval"])
    if "sentinel" in cfg:
        config.sentinel = str(cfg["sentinel"])
    return config


def load_config(path: str | Path) -> EvalConfig:
    """Load an EvalConfig from a YAML file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"orb config not found: {p}")
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is not None and not isinstance(raw, dict):
        raise ValueError(f"orb config must be a mapping, got {type(raw).__name__}")
    return config_from_dict(raw)
