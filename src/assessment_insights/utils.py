from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def stable_json(obj: Any) -> str:
    """Serialize with sorted keys so persisted JSON columns are reproducible."""
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, default=str)
