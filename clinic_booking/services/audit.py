"""Append-only audit logging."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Mapping

import sqlalchemy as sa

from clinic_booking.services.database import session_scope

SENSITIVE_KEYS = {"notes", "note", "reason", "cancel_reason", "payment_reference"}

_INSERT = """
    INSERT INTO audit_log(actor_user_id, action, entity, entity_id, ts, result, meta_json_redacted)
    VALUES (:actor_user_id, :action, :entity, :entity_id, :ts, :result, :meta)
"""


def _sanitize_meta(meta: Mapping[str, Any] | None) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    if not meta:
        return cleaned
    for key, value in meta.items():
        if key.lower() in SENSITIVE_KEYS:
            cleaned[key] = "[redacted]"
        else:
            cleaned[key] = value
    return cleaned


def write_event(
    actor_user_id: str | None,
    action: str,
    *,
    entity: str | None = None,
    entity_id: str | None = None,
    result: str = "ok",
    meta: Mapping[str, Any] | None = None,
    conn: sqlite3.Connection | None = None,
) -> None:
    """Record an audit event.

    Pass ``conn`` to write inside the caller's open transaction; the row then
    commits or rolls back together with the change it describes.
    """

    params = {
        "actor_user_id": actor_user_id,
        "action": action,
        "entity": entity,
        "entity_id": entity_id,
        "ts": datetime.now(timezone.utc).isoformat(),
        "result": result,
        "meta": json.dumps(_sanitize_meta(meta), ensure_ascii=False),
    }
    if conn is not None:
        conn.execute(_INSERT, params)
        return
    with session_scope() as session:
        session.execute(sa.text(_INSERT), params)


def recent_events(limit: int = 50, *, entity_id: str | None = None) -> list[dict[str, Any]]:
    sql = "SELECT actor_user_id, action, entity, entity_id, ts, result, meta_json_redacted FROM audit_log"
    params: dict[str, Any] = {"limit": limit}
    if entity_id:
        sql += " WHERE entity_id = :entity_id"
        params["entity_id"] = entity_id
    sql += " ORDER BY id DESC LIMIT :limit"
    with session_scope() as session:
        rows = session.execute(sa.text(sql), params).mappings().all()
    return [
        {**dict(row), "meta": json.loads(row["meta_json_redacted"] or "{}")}
        for row in rows
    ]
