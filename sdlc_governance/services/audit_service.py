"""
Audit Trail service.

``append`` is the write-only sink the engine calls; it adds the row to the
caller's transaction (``flush`` only) so the history commits atomically
with the state change it describes. Building the entry is best-effort: a
bad action name or unserialisable metadata is logged and skipped rather
than failing the decision. The query helpers below serve human-facing
history views and are never used for decision logic.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import and_, or_, select

from sdlc_governance.models import db
from sdlc_governance.models.audit import AUDIT_ACTIONS, AuditLog
from sdlc_governance.models.document import Document

logger = logging.getLogger(__name__)


def append(
    *,
    action: str,
    target_type: str,
    target_id: int | str,
    actor_id: int | None = None,
    metadata: dict | None = None,
) -> AuditLog | None:
    """Append one audit row to the current transaction.

    Returns the flushed AuditLog, or None when the entry could not be built.
    """
    try:
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action!r}")
        payload = json.dumps(metadata or {}, default=str)
    except (TypeError, ValueError) as exc:
        logger.warning("Audit entry skipped: action=%s target=%s/%s error=%s",
                       action, target_type, target_id, exc)
        return None

    log = AuditLog(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        metadata_json=payload,
    )
    db.session.add(log)
    db.session.flush()
    return log


def history_for(target_type: str, target_id: int | str, limit: int = 200) -> list[dict]:
    """Audit rows for one target, newest first."""
    rows = db.session.execute(
        select(AuditLog)
        .where(AuditLog.target_type == target_type, AuditLog.target_id == str(target_id))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    ).scalars().all()
    return [r.to_dict() for r in rows]


def project_history(project_id: int, limit: int = 200) -> list[dict]:
    """Project rows plus rows for every document of the project, newest first."""
    doc_ids = [
        str(i) for i in db.session.execute(
            select(Document.id).where(Document.project_id == project_id)
        ).scalars().all()
    ]
    conditions = [and_(AuditLog.target_type == "project", AuditLog.target_id == str(project_id))]
    if doc_ids:
        conditions.append(and_(AuditLog.target_type == "document", AuditLog.target_id.in_(doc_ids)))
    rows = db.session.execute(
        select(AuditLog)
        .where(or_(*conditions))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    ).scalars().all()
    return [r.to_dict() for r in rows]


def count(action: str, target_type: str | None = None, target_id: int | str | None = None) -> int:
    q = select(db.func.count(AuditLog.id)).where(AuditLog.action == action)
    if target_type is not None:
        q = q.where(AuditLog.target_type == target_type)
    if target_id is not None:
        q = q.where(AuditLog.target_id == str(target_id))
    return db.session.execute(q).scalar_one()
