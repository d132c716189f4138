"""Test catalog and report format endpoints."""

from fastapi import APIRouter, status

from labcenter.core.exceptions import NotFoundException
from labcenter.dependencies import AdminUser, Cache, CurrentUser, DatabaseSession, StaffUser
from labcenter.schemas.catalog import (
    LabTestCreate,
    LabTestResponse,
    LabTestUpdate,
    ReportFormatResponse,
    ReportFormatUpsert,
)
from labcenter.services.catalog_service import CatalogService

router = APIRouter()


@router.get(
    "/tests",
    response_model=list[LabTestResponse],
    status_code=status.HTTP_200_OK,
    summary="List bookable tests",
)
async def list_tests(_: CurrentUser, db: DatabaseSession, cache: Cache) -> list[LabTestResponse]:
    """The test catalog with current prices."""
    tests = await CatalogService(db, cache).list_tests()
    return [LabTestResponse.model_validate(test) for test in tests]


@router.post(
    "/tests",
    response_model=LabTestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a test",
)
async def create_test(
    data: LabTestCreate, _: AdminUser, db: DatabaseSession, cache: Cache
) -> LabTestResponse:
    """Add a test to the catalog."""
    return LabTestResponse.model_validate(await CatalogService(db, cache).create_test(data))


@router.patch(
    "/tests/{test_id}",
    response_model=LabTestResponse,
    status_code=status.HTTP_200_OK,
    summary="Edit a test",
)
async def update_test(
    test_id: str, data: LabTestUpdate, _: AdminUser, db: DatabaseSession, cache: Cache
) -> LabTestResponse:
    """Change a test's name or price. Existing bookings keep their snapshot."""
    return LabTestResponse.model_validate(await CatalogService(db, cache).update_test(test_id, data))


@router.delete(
    "/tests/{test_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a test",
)
async def delete_test(test_id: str, _: AdminUser, db: DatabaseSession, cache: Cache) -> None:
    """Remove a test and its report format."""
    await CatalogService(db, cache).delete_test(test_id)


@router.get(
    "/report-formats",
    response_model=list[ReportFormatResponse],
    status_code=status.HTTP_200_OK,
    summary="List report formats",
)
async def list_formats(_: StaffUser, db: DatabaseSession, cache: Cache) -> list[ReportFormatResponse]:
    """All report formats."""
    formats = await CatalogService(db, cache).list_formats()
    return [ReportFormatResponse.model_validate(fmt) for fmt in formats]


@router.get(
    "/report-formats/{test_id}",
    response_model=ReportFormatResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a report format",
)
async def get_format(
    test_id: str, _: StaffUser, db: DatabaseSession, cache: Cache
) -> ReportFormatResponse:
    """Expected parameters of one test."""
    fmt = await CatalogService(db, cache).get_format(test_id)
    if fmt is None:
        raise NotFoundException(f"No report format for test {test_id}")
    return ReportFormatResponse.model_validate(fmt)


@router.put(
    "/report-formats/{test_id}",
    response_model=ReportFormatResponse,
    status_code=status.HTTP_200_OK,
    summary="Define a report format",
)
async def upsert_format(
    test_id: str, data: ReportFormatUpsert, _: AdminUser, db: DatabaseSession, cache: Cache
) -> ReportFormatResponse:
    """Create or replace the parameters reported for a test."""
    fmt = await CatalogService(db, cache).upsert_format(test_id, data)
    return ReportFormatResponse.model_validate(fmt)
