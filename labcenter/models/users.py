"""User table: patients, phlebotomists, staff and admins."""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from labcenter.models.metadata import metadata

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    # Firebase identity; null for walk-in patients registered by staff
    Column("firebase_uid", Text, nullable=True, unique=True, index=True),
    Column("email", Text, nullable=True, index=True),
    Column("full_name", Text, nullable=False),
    Column("contact", String(20), nullable=True),
    Column("address", Text, nullable=True),
    Column("age", Integer, nullable=True),
    Column("sex", String(10), nullable=True),
    Column("role", String(20), nullable=False, server_default=text("'patient'"), index=True),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("last_login_at", DateTime(timezone=True)),
    CheckConstraint(
        "role IN ('patient', 'phlebo', 'staff', 'admin')",
        name="users_role_check",
    ),
)
