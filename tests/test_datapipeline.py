"""Tests for cloudspec.resources.datapipeline."""

from __future__ import annotations

import logging

import pytest
from botocore.exceptions import ClientError

from cloudspec.errors import NotFoundError, ResourceError
from cloudspec.resource import lookup
from cloudspec.resources.datapipeline import (
    PipelineDefinition,
    PipelineObject,
    expand_pipeline_objects,
    flatten_pipeline_objects,
    validation_errors,
)


def _error(code: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, "Operation")


@pytest.fixture
def client(ctx):
    return ctx.client("datapipeline")


DEFAULT_OBJECT = {
    "id": "Default",
    "name": "Default",
    "fields": [
        {"key": "workerGroup", "string_value": "workers"},
        {"key": "role", "ref_value": "PipelineRole"},
    ],
}

API_OBJECT = {
    "id": "Default",
    "name": "Default",
    "fields": [
        {"key": "role", "refValue": "PipelineRole"},
        {"key": "workerGroup", "stringValue": "workers"},
    ],
}


def _definition(**kwargs) -> PipelineDefinition:
    return PipelineDefinition(**{"pipeline_id": "df-1", "pipeline_objects": [DEFAULT_OBJECT], **kwargs})


class TestHelpers:
    def test_expand_fields(self):
        [obj] = expand_pipeline_objects([PipelineObject.model_validate(DEFAULT_OBJECT)])
        assert obj["id"] == "Default"
        fields = sorted(obj["fields"], key=lambda f: f["key"])
        assert fields == [
            {"key": "role", "refValue": "PipelineRole"},
            {"key": "workerGroup", "stringValue": "workers"},
        ]

    def test_flatten_fields(self):
        [obj] = flatten_pipeline_objects([API_OBJECT])
        assert PipelineObject.model_validate(obj) == PipelineObject.model_validate(DEFAULT_OBJECT)

    def test_validation_errors(self):
        message = validation_errors([{"id": "Default", "errors": ["missing role"]}])
        assert message == "id: Default, error: ['missing role']"
        assert validation_errors(None) == ""


class TestPipelineDefinition:
    def test_read(self, ctx, client):
        client.get_pipeline_definition.return_value = {
            "pipelineObjects": [API_OBJECT],
            "parameterValues": [{"id": "myBucket", "stringValue": "s3://logs"}],
        }
        attrs = PipelineDefinition.read(ctx, "df-1")
        client.get_pipeline_definition.assert_called_once_with(pipelineId="df-1")
        assert attrs["parameter_values"] == [{"id": "myBucket", "string_value": "s3://logs"}]
        assert not _definition(parameter_values=[{"id": "myBucket", "string_value": "s3://logs"}]).diff(attrs)

    def test_read_empty_definition(self, ctx, client):
        client.get_pipeline_definition.return_value = {"pipelineObjects": []}
        assert PipelineDefinition.read(ctx, "df-1") is None

    @pytest.mark.parametrize("code", ["PipelineNotFoundException", "PipelineDeletedException"])
    def test_read_gone(self, ctx, client, code):
        client.get_pipeline_definition.side_effect = _error(code)
        assert PipelineDefinition.read(ctx, "df-1") is None

    def test_find(self, ctx, client):
        client.get_pipeline_definition.return_value = {"pipelineObjects": [API_OBJECT]}
        assert _definition().find(ctx) == "df-1"

    def test_create_puts_and_activates(self, ctx, client):
        client.put_pipeline_definition.return_value = {"errored": False}
        assert _definition(
            parameter_objects=[{"id": "myBucket", "attributes": [{"key": "type", "string_value": "String"}]}]
        ).create(ctx) == "df-1"
        request = client.put_pipeline_definition.call_args.kwargs
        assert request["pipelineId"] == "df-1"
        assert request["parameterObjects"] == [
            {"id": "myBucket", "attributes": [{"key": "type", "stringValue": "String"}]}
        ]
        assert "parameterValues" not in request
        client.activate_pipeline.assert_called_once_with(pipelineId="df-1")

    def test_create_retries_role_validation(self, ctx, client, no_sleep):
        client.put_pipeline_definition.side_effect = [
            {"errored": True, "validationErrors": [{"id": "Default", "errors": ["role is not valid"]}]},
            {"errored": False},
        ]
        assert _definition().create(ctx) == "df-1"
        assert client.put_pipeline_definition.call_count == 2

    def test_create_retries_internal_error(self, ctx, client, no_sleep):
        client.put_pipeline_definition.side_effect = [_error("InternalServiceError"), {"errored": False}]
        assert _definition().create(ctx) == "df-1"

    def test_create_validation_failure(self, ctx, client):
        client.put_pipeline_definition.return_value = {
            "errored": True,
            "validationErrors": [{"id": "Schedule", "errors": ["period is required"]}],
        }
        with pytest.raises(ResourceError, match="error validating after creation .*period is required"):
            _definition().create(ctx)
        client.activate_pipeline.assert_not_called()

    def test_create_client_error(self, ctx, client):
        client.put_pipeline_definition.side_effect = _error("InvalidRequestException", "bad")
        with pytest.raises(ResourceError, match="error creating DataPipeline Definition"):
            _definition().create(ctx)

    def test_activation_failure(self, ctx, client):
        client.put_pipeline_definition.return_value = {"errored": False}
        client.activate_pipeline.side_effect = _error("InvalidRequestException")
        with pytest.raises(ResourceError, match="error activating"):
            _definition().create(ctx)

    def test_delete_leaves_definition(self, ctx, client, caplog):
        with caplog.at_level(logging.DEBUG, logger="cloudspec.resources.datapipeline"):
            _definition().delete(ctx, "df-1")
        assert client.method_calls == []
        assert "df-1" in caplog.text

    def test_objects_required(self):
        with pytest.raises(ValueError):
            PipelineDefinition(pipeline_id="df-1", pipeline_objects=[])


class TestPipelineDefinitionLookup:
    def test_reads_definition(self, ctx, client):
        client.get_pipeline_definition.return_value = {
            "pipelineObjects": [API_OBJECT],
            "parameterObjects": [
                {"id": "myBucket", "attributes": [{"key": "type", "stringValue": "String"}]}
            ],
            "parameterValues": [{"id": "myBucket", "stringValue": "s3://logs"}],
        }
        found = lookup("datapipeline_pipeline_definition", ctx, pipeline_id="df-1")
        client.get_pipeline_definition.assert_called_once_with(pipelineId="df-1")
        assert found["pipeline_id"] == "df-1"
        assert found["pipeline_objects"] == flatten_pipeline_objects([API_OBJECT])
        assert found["parameter_objects"] == [
            {"id": "myBucket", "attributes": [{"key": "type", "string_value": "String"}]}
        ]
        assert found["parameter_values"] == [{"id": "myBucket", "string_value": "s3://logs"}]

    def test_empty_definition(self, ctx, client):
        client.get_pipeline_definition.return_value = {"pipelineObjects": []}
        found = lookup("datapipeline_pipeline_definition", ctx, pipeline_id="df-1")
        assert found["pipeline_objects"] == []
        assert found["parameter_values"] == []

    @pytest.mark.parametrize("code", ["PipelineNotFoundException", "PipelineDeletedException"])
    def test_missing_pipeline(self, ctx, client, code):
        client.get_pipeline_definition.side_effect = _error(code)
        with pytest.raises(NotFoundError, match="pipeline df-1 not found"):
            lookup("datapipeline_pipeline_definition", ctx, pipeline_id="df-1")

    def test_other_errors_wrapped(self, ctx, client):
        client.get_pipeline_definition.side_effect = _error("AccessDeniedException")
        with pytest.raises(ResourceError, match="error reading datapipeline_pipeline_definition"):
            lookup("datapipeline_pipeline_definition", ctx, pipeline_id="df-1")

    def test_pipeline_id_required(self, ctx):
        with pytest.raises(ValueError):
            lookup("datapipeline_pipeline_definition", ctx)
