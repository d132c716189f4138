"""Appointments table model using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from labcenter.models.metadata import metadata

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column("patient_id", Uuid, nullable=False, index=True),
    # Snapshot fields (denormalized at booking time, never refreshed)
    Column("patient_name", Text, nullable=False),
    Column("test_ids", JSON, nullable=False),
    Column("test_names", JSON, nullable=False),
    Column("total_cost", Numeric(10, 2, asdecimal=False), nullable=False),
    Column("address", Text, nullable=False),
    Column("contact", String(20), nullable=True),
    Column("description", Text, nullable=True),
    # Scheduled collection time (date + slot)
    Column("date", DateTime(timezone=True), nullable=False),
    Column("time_slot", String(5), nullable=False),
    # Workflow
    Column("status", String(32), nullable=False, server_default=text("'Pending'")),
    Column("phlebo_id", Uuid, nullable=True, index=True),
    Column("phlebo_name", Text, nullable=True),
    Column("report_data", JSON, nullable=True),
    Column("feedback_submitted", Boolean, nullable=False, server_default=text("false")),
    Column("notes", Text, nullable=True),
    # Optimistic concurrency: bumped by every write
    Column("version", Integer, nullable=False, server_default=text("1")),
    # Audit fields
    Column("booked_by", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    CheckConstraint(
        "status IN ('Pending', 'Confirmed', 'Sample Collected', 'Received', 'In Process', "
        "'Reporting', 'Report Uploaded', 'Completed', 'Cancelled')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "(phlebo_id IS NULL AND phlebo_name IS NULL) OR "
        "(phlebo_id IS NOT NULL AND phlebo_name IS NOT NULL)",
        name="appointments_phlebo_pair_check",
    ),
    Index("idx_appointments_status_date", "status", "date"),
)
