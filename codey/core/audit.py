from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def append_audit(event: dict[str, Any], path: str = "./codey_audit.jsonl") -> None:
    event = dict(event)
    event["ts"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")
