"""Report data schemas."""

from uuid import UUID

from pydantic import BaseModel, Field


class ReportParameter(BaseModel):
    """One measured parameter of a test result."""

    name: str
    value: str = ""
    unit: str = ""
    range: str = ""


class ReportBlock(BaseModel):
    """Results for one test on an appointment."""

    test_id: str
    test_name: str
    parameters: list[ReportParameter] = Field(default_factory=list)


class AnnotatedParameter(ReportParameter):
    """Parameter with display-time range evaluation."""

    out_of_range: bool = False
    flag: str = ""


class AnnotatedBlock(BaseModel):
    """Report block with annotated parameters."""

    test_id: str
    test_name: str
    parameters: list[AnnotatedParameter] = Field(default_factory=list)


class ParameterValueInput(BaseModel):
    """A submitted value for a named parameter."""

    name: str
    value: str | None = None


class ReportBlockInput(BaseModel):
    """Submitted values for one test."""

    test_id: str
    parameters: list[ParameterValueInput] = Field(default_factory=list)


class ReportDraftResponse(BaseModel):
    """Report data for the reporting screen."""

    appointment_id: UUID
    status: str
    version: int
    patient_name: str
    report_data: list[AnnotatedBlock]
