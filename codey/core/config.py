from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from codey.core.execution import WANDBOX_URL


CONFIG_NAME = "codey.yaml"
CONFIG_ENV = "CODEY_CONFIG"


@dataclass(frozen=True)
class ExecutionSettings:
    url: str = WANDBOX_URL
    timeout: float = 30.0
    compilers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CodeyConfig:
    problems_path: str
    challenge_duration: float = 1800.0
    verification_timeout: float | None = 60.0
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    audit_path: str = "./codey_audit.jsonl"
    log_level: str = "INFO"


def find_config(path: str | Path | None = None, cwd: Path | None = None) -> Path:
    """Pick the config file: an explicit path, then $CODEY_CONFIG, then codey.yaml in cwd or a parent."""
    # only the bare default name is searched for, anything else is taken as given
    if path is not None and str(path) != CONFIG_NAME:
        return Path(path)
    candidates: list[Path] = []
    if os.getenv(CONFIG_ENV):
        candidates.append(Path(os.environ[CONFIG_ENV]))
    start = cwd or Path.cwd()
    candidates.extend(parent / CONFIG_NAME for parent in [start, *start.parents])
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return candidates[0]


def _read_config(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must hold a mapping of settings")
    return raw


def _resolve(base: Path, value: str) -> str:
    if Path(value).is_absolute():
        return value
    return str((base / value).resolve())


def load_config(path: str | Path) -> CodeyConfig:
    master_path = Path(path).resolve()
    raw = _read_config(master_path)
    base = master_path.parent

    problems_path = _resolve(base, raw.get("problems", {}).get("path", "./problems"))
    audit_path = _resolve(base, raw.get("audit", {}).get("path", "./codey_audit.jsonl"))

    duration = float(raw.get("challenge", {}).get("duration_seconds", 1800))

    # 0 or null disables the verification timeout
    timeout_raw = raw.get("verification", {}).get("timeout_seconds", 60)
    verification_timeout = float(timeout_raw) if timeout_raw else None

    exec_raw = raw.get("execution", {})
    execution = ExecutionSettings(
        url=exec_raw.get("url", WANDBOX_URL),
        timeout=float(exec_raw.get("timeout_seconds", 30)),
        compilers={str(k): str(v) for k, v in (exec_raw.get("compilers") or {}).items()},
    )

    return CodeyConfig(
        problems_path=problems_path,
        challenge_duration=duration,
        verification_timeout=verification_timeout,
        execution=execution,
        audit_path=audit_path,
        log_level=str(raw.get("log_level", "INFO")).upper(),
    )
