"""Test catalog and report format service (Redis-cached reference data)."""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from labcenter.config import settings
from labcenter.core.exceptions import ConflictException, NotFoundException, ValidationException
from labcenter.core.redis_client import CacheManager
from labcenter.models.catalog import lab_tests, report_formats
from labcenter.schemas.catalog import (
    LabTestCreate,
    LabTestUpdate,
    ReportFormatUpsert,
)

logger = structlog.get_logger(__name__)


class CatalogService:
    """Reads and writes the test catalog and report formats."""

    def __init__(self, db: AsyncSession, cache: CacheManager | None = None):
        """Initialize service with database session and optional cache."""
        self.db = db
        self.cache = cache

    def _tests_key(self) -> str | None:
        return self.cache.key("catalog", "tests") if self.cache else None

    def _format_key(self, test_id: str) -> str | None:
        return self.cache.key("catalog", "format", test_id) if self.cache else None

    async def list_tests(self) -> list[dict[str, Any]]:
        """All catalog tests ordered by name."""
        key = self._tests_key()
        if self.cache and key:
            cached = self.cache.get_json(key)
            if cached is not None:
                return cached

        result = await self.db.execute(select(lab_tests).order_by(lab_tests.c.name))
        tests = [dict(row._mapping) for row in result.fetchall()]

        if self.cache and key:
            self.cache.set_json(key, tests, ttl=settings.catalog_cache_ttl)
        return tests

    async def get_test(self, test_id: str) -> dict[str, Any]:
        """
        Get one catalog test.

        Raises:
            NotFoundException: If the test does not exist
        """
        result = await self.db.execute(select(lab_tests).where(lab_tests.c.id == test_id))
        row = result.fetchone()
        if not row:
            raise NotFoundException(f"Test {test_id} not found")
        return dict(row._mapping)

    async def get_tests_by_ids(self, test_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """
        Look up several tests at once.

        Raises:
            ValidationException: If any id is not in the catalog
        """
        wanted = list(test_ids)
        result = await self.db.execute(select(lab_tests).where(lab_tests.c.id.in_(wanted)))
        found = {row.id: dict(row._mapping) for row in result.fetchall()}
        unknown = [test_id for test_id in wanted if test_id not in found]
        if unknown:
            raise ValidationException(f"Unknown test(s): {', '.join(unknown)}")
        return found

    async def create_test(self, data: LabTestCreate) -> dict[str, Any]:
        """
        Add a test to the catalog.

        Raises:
            ConflictException: If a test with the same id exists
        """
        existing = await self.db.execute(select(lab_tests.c.id).where(lab_tests.c.id == data.id))
        if existing.scalar() is not None:
            raise ConflictException(f"Test {data.id} already exists")

        result = await self.db.execute(
            lab_tests.insert()
            .values(id=data.id, name=data.name, cost=data.cost)
            .returning(lab_tests)
        )
        row = result.fetchone()
        await self.db.commit()

        self._invalidate()
        logger.info("catalog_test_created", test_id=data.id)
        return dict(row._mapping)

    async def update_test(self, test_id: str, data: LabTestUpdate) -> dict[str, Any]:
        """Edit a catalog test. Booked appointments keep their snapshots."""
        values = data.model_dump(exclude_unset=True, exclude_none=True)
        if not values:
            return await self.get_test(test_id)
        values["updated_at"] = datetime.now(UTC)

        result = await self.db.execute(
            update(lab_tests).where(lab_tests.c.id == test_id).values(**values).returning(lab_tests)
        )
        row = result.fetchone()
        if not row:
            await self.db.rollback()
            raise NotFoundException(f"Test {test_id} not found")
        await self.db.commit()

        self._invalidate()
        logger.info("catalog_test_updated", test_id=test_id, fields=list(values))
        return dict(row._mapping)

    async def delete_test(self, test_id: str) -> None:
        """Remove a test and its report format from the catalog."""
        result = await self.db.execute(delete(lab_tests).where(lab_tests.c.id == test_id))
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundException(f"Test {test_id} not found")
        await self.db.execute(delete(report_formats).where(report_formats.c.test_id == test_id))
        await self.db.commit()

        self._invalidate(test_id)
        logger.info("catalog_test_deleted", test_id=test_id)

    async def list_formats(self) -> list[dict[str, Any]]:
        """All report formats."""
        result = await self.db.execute(select(report_formats).order_by(report_formats.c.test_name))
        return [dict(row._mapping) for row in result.fetchall()]

    async def get_format(self, test_id: str) -> dict[str, Any] | None:
        """Report format for one test, or None when the test has none."""
        key = self._format_key(test_id)
        if self.cache and key:
            cached = self.cache.get_json(key)
            if cached is not None:
                return cached

        result = await self.db.execute(
            select(report_formats).where(report_formats.c.test_id == test_id)
        )
        row = result.fetchone()
        if not row:
            return None

        fmt = dict(row._mapping)
        if self.cache and key:
            self.cache.set_json(key, fmt, ttl=settings.catalog_cache_ttl)
        return fmt

    async def get_formats(self, test_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Report formats keyed by test id; tests without a format are omitted."""
        formats = {}
        for test_id in test_ids:
            fmt = await self.get_format(test_id)
            if fmt is not None:
                formats[test_id] = fmt
        return formats

    async def upsert_format(self, test_id: str, data: ReportFormatUpsert) -> dict[str, Any]:
        """
        Create or replace the report format of a catalog test.

        Appointments whose report entry already began keep the parameters
        they captured.
        """
        test = await self.get_test(test_id)
        values = {
            "test_id": test_id,
            "test_name": data.test_name or test["name"],
            "parameters": [param.model_dump() for param in data.parameters],
            "updated_at": datetime.now(UTC),
        }

        existing = await self.db.execute(
            select(report_formats.c.test_id).where(report_formats.c.test_id == test_id)
        )
        if existing.scalar() is None:
            stmt = report_formats.insert().values(**values)
        else:
            stmt = update(report_formats).where(report_formats.c.test_id == test_id).values(**values)

        result = await self.db.execute(stmt.returning(report_formats))
        row = result.fetchone()
        await self.db.commit()

        self._invalidate(test_id)
        logger.info("report_format_saved", test_id=test_id, parameters=len(values["parameters"]))
        return dict(row._mapping)

    def _invalidate(self, test_id: str | None = None) -> None:
        if not self.cache:
            return
        keys = [self.cache.key("catalog", "tests")]
        if test_id:
            keys.append(self.cache.key("catalog", "format", test_id))
        self.cache.delete(*keys)
