from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from codey.core.errors import LoadError


PROBLEM_SUFFIXES = {".yaml", ".yml"}


@dataclass(frozen=True)
class TestCase:
    input: str
    output: str

    def matches(self, actual: str) -> bool:
        return actual.strip() == self.output


@dataclass(frozen=True)
class Problem:
    name: str
    description: str
    testcases: tuple[TestCase, ...]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Problem":
        validate_problem(data)
        cases = tuple(
            TestCase(input=_as_text(tc.get("input")), output=_as_text(tc.get("output")).strip())
            for tc in data.get("testcases") or []
        )
        return cls(
            name=str(data["name"]).strip(),
            description=str(data.get("description", "")).strip(),
            testcases=cases,
        )


def _as_text(value: Any) -> str:
    # yaml turns bare numbers into ints
    if value is None:
        return ""
    return str(value)


def validate_problem(data: Any) -> None:
    if not isinstance(data, dict):
        raise LoadError("problem definition must be a mapping")

    name = data.get("name")
    if name is None or not str(name).strip():
        raise LoadError("problem name is missing")

    testcases = data.get("testcases") or []
    if not isinstance(testcases, list):
        raise LoadError(f"testcases of {name} must be a list")

    for i, tc in enumerate(testcases):
        if not isinstance(tc, dict):
            raise LoadError(f"testcase {i} of {name} must be a mapping")
        # a case may legitimately feed empty stdin, but both keys must be spelled out
        for key in ("input", "output"):
            if key not in tc:
                raise LoadError(f"testcase {i} of {name} has no {key}")


def load_problem(path: str | Path) -> Problem:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise LoadError(f"could not read problem file {p}: {e}") from e
    except yaml.YAMLError as e:
        raise LoadError(f"malformed problem file {p}: {e}") from e

    try:
        return Problem.from_dict(data)
    except LoadError as e:
        raise LoadError(f"{p.name}: {e}") from e


def load_problems(location: str | Path) -> list[Problem]:
    path = Path(location)
    logger.info(f"looking for challenges in {path.resolve()}")
    if not path.is_dir():
        raise LoadError(f"problem directory not found: {path}")

    try:
        files = sorted(f for f in path.iterdir() if f.is_file() and f.suffix.lower() in PROBLEM_SUFFIXES)
    except OSError as e:
        raise LoadError(f"could not list {path}: {e}") from e

    logger.info(f"found {len(files)} files in {path}")
    return [load_problem(f) for f in files]
