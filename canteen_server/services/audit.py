"""
Business audit trail
Rows in the logs table are written inside the caller's unit of work, so an
audit entry exists exactly when the mutation it describes was committed.
"""

import json
from datetime import date, datetime
from typing import Any, Dict, Optional


def _default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def write_log(conn, action: str, at: datetime, user_id: Optional[int] = None,
              actor_id: Optional[int] = None, detail: Optional[Dict[str, Any]] = None):
    conn.execute(
        "INSERT INTO logs(user_id, actor_id, action, detail_json, created_at) VALUES (?,?,?,?,?)",
        [user_id, actor_id, action, json.dumps(detail or {}, default=_default), at],
    )
