"""
Audit event model.

Structured, insert-only record of order mutations, kept apart from
application logs so it can be retained and queried independently.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import AppendOnlyModel


class AuditEvent(AppendOnlyModel):
    """
    One audited action.

    Attributes:
        event_type: Dotted action name, e.g. ``order.created``
        order_id: Affected order, when the event concerns one
        actor_id: Acting user; NULL for system actions
        payload: Event-specific details
        request_id: Correlation id of the originating request
    """

    __tablename__ = "audit_events"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        comment="Affected order; not a foreign key so events outlive rows",
    )

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_audit_events_order_created", "order_id", "created_at"),
        Index("ix_audit_events_type", "event_type"),
        {"comment": "Append-only audit trail"},
    )
