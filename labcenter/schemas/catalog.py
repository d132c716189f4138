"""Test catalog and report format schemas."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class LabTestBase(BaseModel):
    """Common test catalog fields."""

    name: str = Field(..., min_length=1, max_length=200)
    cost: float = Field(..., ge=0)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Trim whitespace from the test name."""
        v = v.strip()
        if not v:
            raise ValueError("Test name must not be blank")
        return v


class LabTestCreate(LabTestBase):
    """Schema for adding a test to the catalog."""

    id: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")


class LabTestUpdate(BaseModel):
    """Schema for editing a catalog test."""

    name: str | None = Field(None, min_length=1, max_length=200)
    cost: float | None = Field(None, ge=0)


class LabTestResponse(LabTestBase):
    """Catalog test as returned by the API."""

    id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class FormatParameter(BaseModel):
    """Expected parameter of a test report."""

    name: str = Field(..., min_length=1, max_length=200)
    unit: str = Field(default="", max_length=50)
    normal_range: str = Field(default="", max_length=100)


class ReportFormatUpsert(BaseModel):
    """Schema for defining a test's report format."""

    test_name: str | None = Field(None, min_length=1, max_length=200)
    parameters: list[FormatParameter] = Field(..., min_length=1)

    @field_validator("parameters")
    @classmethod
    def unique_names(cls, v: list[FormatParameter]) -> list[FormatParameter]:
        """Parameter names identify values, so they must be unique."""
        names = [p.name.strip() for p in v]
        if len(set(names)) != len(names):
            raise ValueError("Parameter names must be unique")
        return v


class ReportFormatResponse(BaseModel):
    """Report format as returned by the API."""

    test_id: str
    test_name: str
    parameters: list[FormatParameter]
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
