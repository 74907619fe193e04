from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict


def save_run_record(path: str, record: Dict[str, Any]) -> None:
    """Write the run record atomically; a reader never sees a half-written file."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(json.dumps(record, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(p)
