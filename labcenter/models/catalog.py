"""Reference data: the test catalog and per-test report formats."""

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Numeric, String, Table, Text, func

from labcenter.models.metadata import metadata

lab_tests = Table(
    "lab_tests",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", Text, nullable=False),
    Column("cost", Numeric(10, 2, asdecimal=False), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("cost >= 0", name="lab_tests_cost_check"),
)

# parameters: [{"name": ..., "unit": ..., "normal_range": ...}]
report_formats = Table(
    "report_formats",
    metadata,
    Column("test_id", String(64), primary_key=True),
    Column("test_name", Text, nullable=False),
    Column("parameters", JSON, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
