from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from loguru import logger

from codey.core.errors import ExecutionError


WANDBOX_URL = "https://wandbox.org/api/compile.json"

DEFAULT_COMPILERS: dict[str, str] = {
    "python": "cpython-3.12.7",
    "java": "openjdk-jdk-21+35",
    "cpp": "gcc-13.2.0",
    "c": "gcc-13.2.0-c",
    "javascript": "nodejs-20.17.0",
    "rust": "rust-1.82.0",
    "go": "go-1.23.2",
    "ruby": "ruby-3.3.6",
}

LANGUAGE_ALIASES: dict[str, str] = {
    "py": "python",
    "python3": "python",
    "c++": "cpp",
    "cc": "cpp",
    "js": "javascript",
    "node": "javascript",
    "rs": "rust",
    "golang": "go",
    "rb": "ruby",
}

PUBLIC_CLASS_RE = re.compile(r"^(\s*)public\s+((?:final\s+|abstract\s+)*class\s)", re.MULTILINE)


@dataclass(frozen=True)
class ExecutionResult:
    output: str
    status: str = "0"
    compiler_error: str = ""
    program_error: str = ""

    @property
    def trimmed(self) -> str:
        return self.output.strip()

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "ExecutionResult":
        return cls(
            output=str(data.get("program_output") or ""),
            status=str(data.get("status", "")),
            compiler_error=str(data.get("compiler_error") or ""),
            program_error=str(data.get("program_error") or ""),
        )


class ExecutionClient(Protocol):
    async def submit(self, code: str, language: str, stdin: str) -> ExecutionResult: ...


def normalize_language(language: str) -> str:
    lang = (language or "").strip().lower()
    return LANGUAGE_ALIASES.get(lang, lang)


def apply_language_fixes(code: str, language: str) -> str:
    if normalize_language(language) == "java":
        # the service compiles into prog.java, a public class would not match the file name
        return PUBLIC_CLASS_RE.sub(r"\1\2", code)
    return code


class WandboxClient:
    def __init__(
        self,
        url: str = WANDBOX_URL,
        compilers: dict[str, str] | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.compilers = dict(DEFAULT_COMPILERS)
        if compilers:
            self.compilers.update({normalize_language(k): v for k, v in compilers.items()})
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    def compiler_for(self, language: str) -> str:
        lang = normalize_language(language)
        compiler = self.compilers.get(lang)
        if compiler is None:
            raise ExecutionError(f"unsupported language: {language!r}")
        return compiler

    def build_request(self, code: str, language: str, stdin: str, options: str = "") -> dict[str, str]:
        return {
            "code": apply_language_fixes(code, language),
            "compiler": self.compiler_for(language),
            "stdin": stdin or "",
            "compiler-option-raw": options,
        }

    async def submit(self, code: str, language: str, stdin: str) -> ExecutionResult:
        payload = self.build_request(code, language, stdin)
        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ExecutionError(f"execution request failed: {e}") from e
        except ValueError as e:
            raise ExecutionError(f"execution service returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ExecutionError("execution service returned an unexpected body")

        result = ExecutionResult.from_response(data)
        if result.compiler_error and not result.output:
            logger.debug(f"compiler error for {payload['compiler']}: {result.compiler_error.strip()}")
        return result

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "WandboxClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
