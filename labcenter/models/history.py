"""Append-only history log and patient reviews."""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Table,
    Text,
    Uuid,
    func,
)

from labcenter.models.metadata import metadata

history_logs = Table(
    "history_logs",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column("user", Text, nullable=False),
    Column("action", Text, nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False, server_default=func.now(), index=True),
)

reviews = Table(
    "reviews",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column("patient_id", Uuid, nullable=False),
    Column("patient_name", Text, nullable=False),
    Column("test_name", Text, nullable=False),
    Column("rating", Integer, nullable=False),
    Column("comment", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("rating BETWEEN 1 AND 5", name="reviews_rating_check"),
)
