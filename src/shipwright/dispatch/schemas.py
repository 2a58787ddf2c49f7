"""Request / response schemas of the dispatch API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from shipwright.core.exceptions import ValidationError
from shipwright.core.types import JobSpecification, is_valid_project_id

MISSING_FIELDS = "Missing required fields"
INVALID_PROJECT_NAME = "Invalid project name"


class ProjectRequest(BaseModel):
    """Body of ``POST /api/project``. All four fields are required."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        strict=True,
        frozen=True,
    )

    repo_url: str = Field(..., alias="repoUrl", min_length=1)
    output_dir: str = Field(..., alias="outputDir", min_length=1)
    build_command: str = Field(..., alias="buildCommand", min_length=1)
    project_name: str = Field(..., alias="projectName", min_length=1)

    @classmethod
    def parse(cls, payload: Any) -> ProjectRequest:
        """Validate a decoded JSON body.

        Raises:
            ValidationError: ``Missing required fields`` if any field is
                absent, empty or not a string (or the body is not an object);
                ``Invalid project name`` if the name is not URL-safe.
        """
        if not isinstance(payload, dict):
            raise ValidationError(MISSING_FIELDS)
        try:
            request = cls.model_validate(payload)
        except PydanticValidationError as exc:
            missing = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            raise ValidationError(MISSING_FIELDS, details={"fields": missing}) from exc
        if not is_valid_project_id(request.project_name):
            raise ValidationError(INVALID_PROJECT_NAME, code="INVALID_PROJECT_NAME")
        return request

    def to_spec(self) -> JobSpecification:
        try:
            return JobSpecification(
                repository_url=self.repo_url,
                output_dir=self.output_dir,
                build_command=self.build_command,
                project_id=self.project_name,
            )
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid build settings",
                code="INVALID_SPEC",
                details={"errors": [err["msg"] for err in exc.errors()]},
            ) from exc


class QueuedData(BaseModel):
    projectName: str  # noqa: N815
    url: str


class QueuedResponse(BaseModel):
    status: Literal["queued"] = "queued"
    data: QueuedData


class CancelResponse(BaseModel):
    status: Literal["cancelled", "finished"]


class ErrorResponse(BaseModel):
    error: str
