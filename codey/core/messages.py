from __future__ import annotations

import re
from dataclasses import dataclass


# the language tag only counts when the fence line ends right after it
CODE_BLOCK_RE = re.compile(r"```(?:([\w+#.-]*)[ \t]*\n)?(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class MessagePart:
    text: str
    lang: str = ""
    is_code: bool = False


def parse_message(raw: str) -> list[MessagePart]:
    parts: list[MessagePart] = []
    pos = 0
    for match in CODE_BLOCK_RE.finditer(raw):
        before = raw[pos:match.start()]
        if before.strip():
            parts.append(MessagePart(text=before))
        lang = (match.group(1) or "").lower()
        parts.append(MessagePart(text=match.group(2), lang=lang, is_code=True))
        pos = match.end()

    rest = raw[pos:]
    if rest.strip():
        parts.append(MessagePart(text=rest))
    return parts


def code_parts(raw: str) -> list[MessagePart]:
    return [p for p in parse_message(raw) if p.is_code]
