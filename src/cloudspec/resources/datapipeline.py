"""Data Pipeline: pipeline definitions."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from botocore.exceptions import ClientError
from pydantic import Field

from ..aws import error_code_equals, retry_codes
from ..context import Context
from ..errors import NotFoundError, TransientError
from ..projects import Project
from ..resource import Attrs, DataSource, Resource
from ..spec import data_source, spec

logger = logging.getLogger(__name__)

SERVICE = "datapipeline"

DEFINITION_OPERATION_TIMEOUT = 4 * 60.0

INTERNAL_SERVICE_ERROR = "InternalServiceError"
PIPELINE_NOT_FOUND = "PipelineNotFoundException"
PIPELINE_DELETED = "PipelineDeletedException"


class PipelineField(Attrs):
    key: str = Field(min_length=1, max_length=256)
    ref_value: str | None = Field(default=None, min_length=1, max_length=256)
    string_value: str | None = Field(default=None, max_length=10240)


class PipelineObject(Attrs):
    id: str = Field(min_length=1, max_length=1024)
    name: str = Field(max_length=1024)
    fields: frozenset[PipelineField] = frozenset()


class ParameterAttribute(Attrs):
    key: str = Field(min_length=1, max_length=256)
    string_value: str = Field(max_length=10240)


class ParameterObject(Attrs):
    id: str = Field(min_length=1, max_length=256)
    attributes: frozenset[ParameterAttribute] = frozenset()


class ParameterValue(Attrs):
    id: str = Field(min_length=1, max_length=256)
    string_value: str = Field(max_length=10240)


def validation_errors(errors: Iterable[dict[str, Any]] | None) -> str:
    """Join the validation errors of a put into one message."""
    return "; ".join(
        f"id: {error.get('id')}, error: {error.get('errors', [])}" for error in errors or ()
    )


def expand_pipeline_objects(objects: Iterable[PipelineObject]) -> list[dict[str, Any]]:
    expanded = []
    for obj in objects:
        fields = []
        for field in obj.fields:
            item: dict[str, Any] = {"key": field.key}
            if field.ref_value:
                item["refValue"] = field.ref_value
            if field.string_value is not None:
                item["stringValue"] = field.string_value
            fields.append(item)
        expanded.append({"id": obj.id, "name": obj.name, "fields": fields})
    return expanded


def flatten_pipeline_objects(objects: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "id": obj.get("id"),
            "name": obj.get("name"),
            "fields": [
                {
                    "key": field.get("key"),
                    "ref_value": field.get("refValue"),
                    "string_value": field.get("stringValue"),
                }
                for field in obj.get("fields", [])
            ],
        }
        for obj in objects
    ]


def flatten_definition(pipeline_id: str, output: dict[str, Any]) -> dict[str, Any]:
    """Flatten a GetPipelineDefinition response into attributes."""
    return {
        "pipeline_id": pipeline_id,
        "pipeline_objects": flatten_pipeline_objects(output.get("pipelineObjects", [])),
        "parameter_objects": [
            {
                "id": obj.get("id"),
                "attributes": [
                    {"key": attr.get("key"), "string_value": attr.get("stringValue")}
                    for attr in obj.get("attributes", [])
                ],
            }
            for obj in output.get("parameterObjects", [])
        ],
        "parameter_values": [
            {"id": value.get("id"), "string_value": value.get("stringValue")}
            for value in output.get("parameterValues", [])
        ],
    }


@spec("datapipeline_definition")
class PipelineDefinition(Resource):
    """The objects, parameters and values of an existing pipeline.

    Putting a definition also activates the pipeline. Every attribute
    forces a new definition.
    """

    kind = "DataPipeline Definition"
    service = SERVICE
    default_timeout = DEFINITION_OPERATION_TIMEOUT
    force_new = frozenset({"pipeline_id", "pipeline_objects", "parameter_objects", "parameter_values"})

    pipeline_id: str = Field(min_length=1, max_length=1024)
    pipeline_objects: frozenset[PipelineObject] = Field(min_length=1)
    parameter_objects: frozenset[ParameterObject] = frozenset()
    parameter_values: frozenset[ParameterValue] = frozenset()

    @property
    def label(self) -> str:
        return self.pipeline_id

    def find(self, ctx: Context[Project]) -> str | None:
        return self.pipeline_id if type(self).read(ctx, self.pipeline_id) else None

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        try:
            output = ctx.client(cls.service).get_pipeline_definition(pipelineId=ident)
        except ClientError as exc:
            if error_code_equals(exc, PIPELINE_NOT_FOUND, PIPELINE_DELETED):
                return None
            raise cls.fail("reading", exc, ident) from exc

        if not output.get("pipelineObjects"):
            return None
        return flatten_definition(ident, output)

    def _request(self) -> dict[str, Any]:
        request: dict[str, Any] = {
            "pipelineId": self.pipeline_id,
            "pipelineObjects": expand_pipeline_objects(self.pipeline_objects),
        }
        if self.parameter_objects:
            request["parameterObjects"] = [
                {
                    "id": obj.id,
                    "attributes": [
                        {"key": attr.key, "stringValue": attr.string_value} for attr in obj.attributes
                    ],
                }
                for obj in self.parameter_objects
            ]
        if self.parameter_values:
            request["parameterValues"] = [
                {"id": value.id, "stringValue": value.string_value} for value in self.parameter_values
            ]
        return request

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        request = self._request()

        def put() -> dict[str, Any]:
            output = client.put_pipeline_definition(**request)
            if output.get("errored"):
                errors = validation_errors(output.get("validationErrors"))
                # the pipeline role may not have propagated yet
                if "role" in errors:
                    raise TransientError(f"validation failed: {errors}")
            return output

        try:
            output = self.retry(put, retry_codes(INTERNAL_SERVICE_ERROR))
        except (ClientError, TransientError) as exc:
            raise self.fail("creating", exc, self.pipeline_id) from exc

        if output.get("errored"):
            errors = validation_errors(output.get("validationErrors"))
            raise self.fail("validating after creation", errors, self.pipeline_id)

        try:
            client.activate_pipeline(pipelineId=self.pipeline_id)
        except ClientError as exc:
            raise self.fail("activating", exc, self.pipeline_id) from exc
        return self.pipeline_id

    def delete(self, ctx: Context[Project], ident: str) -> None:
        # definitions live and die with their pipeline
        logger.debug("Leaving definition of pipeline %s in place", ident)


@data_source("datapipeline_pipeline_definition")
class PipelineDefinitionLookup(DataSource):
    """Read the objects, parameters and values of an existing pipeline."""

    service = SERVICE

    pipeline_id: str = Field(min_length=1, max_length=1024)

    def read(self, ctx: Context[Project]) -> dict[str, Any]:
        try:
            output = ctx.client(self.service).get_pipeline_definition(pipelineId=self.pipeline_id)
        except ClientError as exc:
            if error_code_equals(exc, PIPELINE_NOT_FOUND, PIPELINE_DELETED):
                raise NotFoundError(f"pipeline {self.pipeline_id} not found") from exc
            raise
        return flatten_definition(self.pipeline_id, output)
