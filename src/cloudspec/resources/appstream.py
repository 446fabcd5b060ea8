"""AppStream 2.0: fleets and image lookups."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal

from botocore.exceptions import ClientError
from pydantic import Field

from ..aws import error_code_equals, retry_codes
from ..context import Context
from ..errors import NotFoundError, WaitError
from ..projects import Project
from ..resource import (
    UNIQUE_SUFFIX_LENGTH,
    Attrs,
    Block,
    DataSource,
    Resource,
    drop_empty,
    generate_name,
    isoformat,
    name_prefix_from_name,
    string_set,
)
from ..spec import data_source, spec
from ..waiter import GONE, NotFound, PollResult, StatusFetcher, WaitSpec, wait

logger = logging.getLogger(__name__)

SERVICE = "appstream"

FLEET_STATE_TIMEOUT = 180 * 60.0
FLEET_OPERATION_TIMEOUT = 15 * 60.0

# (min_delay, max_delay) between fleet polls, in seconds
FLEET_POLL_DELAY = (10.0, 60.0)

DEFAULT_NAME_PREFIX = "cloudspec-"

RESOURCE_NOT_FOUND = "ResourceNotFoundException"
CONCURRENT_MODIFICATION = "ConcurrentModificationException"

# changing these requires the fleet to be stopped first
STOP_TO_UPDATE = frozenset({"instance_type", "vpc_config"})


# -- fleet state --


def fleet_by_name(client: Any, name: str) -> dict[str, Any] | None:
    try:
        output = client.describe_fleets(Names=[name])
    except ClientError as exc:
        if error_code_equals(exc, RESOURCE_NOT_FOUND):
            return None
        raise
    fleets = output.get("Fleets") or []
    return fleets[0] if fleets else None


def all_fleets(client: Any) -> list[dict[str, Any]]:
    fleets: list[dict[str, Any]] = []
    request: dict[str, Any] = {}
    while True:
        output = client.describe_fleets(**request)
        fleets.extend(output.get("Fleets") or [])
        if not output.get("NextToken"):
            return fleets
        request["NextToken"] = output["NextToken"]


def fleet_state(client: Any, name: str) -> StatusFetcher:
    def fetch() -> PollResult:
        fleet = fleet_by_name(client, name)
        if fleet is None:
            return PollResult()
        return PollResult(fleet, fleet.get("State", ""))

    return fetch


def fleet_running(client: Any, name: str, *, timeout: float = FLEET_STATE_TIMEOUT) -> dict[str, Any]:
    spec_ = WaitSpec(
        pending={"STARTING"},
        target={"RUNNING"},
        timeout=timeout,
        min_delay=FLEET_POLL_DELAY[0],
        max_delay=FLEET_POLL_DELAY[1],
    )
    return wait(spec_, fleet_state(client, name))


def fleet_stopped(client: Any, name: str, *, timeout: float = FLEET_STATE_TIMEOUT) -> dict[str, Any]:
    spec_ = WaitSpec(
        pending={"STOPPING"},
        target={"STOPPED"},
        timeout=timeout,
        min_delay=FLEET_POLL_DELAY[0],
        max_delay=FLEET_POLL_DELAY[1],
    )
    return wait(spec_, fleet_state(client, name))


def fleet_deleted(client: Any, name: str, *, timeout: float = FLEET_OPERATION_TIMEOUT) -> None:
    spec_ = WaitSpec(
        pending={"STOPPED", "STOPPING"},
        target={GONE},
        timeout=timeout,
        min_delay=FLEET_POLL_DELAY[0],
        max_delay=FLEET_POLL_DELAY[1],
        not_found=NotFound.GONE,
    )
    wait(spec_, fleet_state(client, name))


# -- fleets --


class ComputeCapacity(Attrs):
    desired_instances: int = Field(ge=1)


class VpcConfig(Attrs):
    subnet_ids: frozenset[str] = frozenset()
    security_group_ids: frozenset[str] = Field(default=frozenset(), max_length=5)


@spec("appstream_fleet")
class Fleet(Resource):
    """A fleet of streaming instances; kept RUNNING while it exists.

    Without ``name``, the fleet is named ``name_prefix`` plus a unique
    suffix when it is created, and later found again by that prefix.
    ``name`` wins when both are given.
    """

    kind = "AppStream Fleet"
    service = SERVICE
    default_timeout = FLEET_STATE_TIMEOUT
    force_new = frozenset({"name", "name_prefix", "fleet_type"})

    name: str | None = Field(default=None, min_length=1, max_length=100)
    name_prefix: str | None = Field(default=None, min_length=1, max_length=100 - UNIQUE_SUFFIX_LENGTH)
    instance_type: str
    compute_capacity: Annotated[ComputeCapacity, Block]
    image_name: str | None = None
    image_arn: str | None = None
    fleet_type: Literal["ALWAYS_ON", "ON_DEMAND"] = "ON_DEMAND"
    description: str | None = Field(default=None, max_length=256)
    display_name: str | None = Field(default=None, max_length=100)
    disconnect_timeout_in_seconds: int | None = Field(default=None, ge=60, le=360000)
    idle_disconnect_timeout_in_seconds: int | None = Field(default=None, ge=0, le=3600)
    max_user_duration_in_seconds: int | None = Field(default=None, ge=600, le=360000)
    enable_default_internet_access: bool | None = None
    iam_role_arn: str | None = None
    stream_view: Literal["APP", "DESKTOP"] | None = None
    vpc_config: Annotated[VpcConfig | None, Block] = None
    tags: dict[str, str] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.name or self._id or f"{self.name_prefix or DEFAULT_NAME_PREFIX}*"

    def _settings(self) -> dict[str, Any]:
        settings = drop_empty(
            {
                "ImageName": self.image_name,
                "ImageArn": self.image_arn,
                "InstanceType": self.instance_type,
                "ComputeCapacity": {"DesiredInstances": self.compute_capacity.desired_instances},
                "Description": self.description,
                "DisplayName": self.display_name,
                "DisconnectTimeoutInSeconds": self.disconnect_timeout_in_seconds,
                "IdleDisconnectTimeoutInSeconds": self.idle_disconnect_timeout_in_seconds,
                "MaxUserDurationInSeconds": self.max_user_duration_in_seconds,
                "IamRoleArn": self.iam_role_arn,
                "StreamView": self.stream_view,
            }
        )
        if self.enable_default_internet_access is not None:
            settings["EnableDefaultInternetAccess"] = self.enable_default_internet_access
        if self.vpc_config is not None:
            settings["VpcConfig"] = drop_empty(
                {
                    "SubnetIds": string_set(self.vpc_config.subnet_ids),
                    "SecurityGroupIds": string_set(self.vpc_config.security_group_ids),
                }
            )
        return settings

    def find(self, ctx: Context[Project]) -> str | None:
        client = self.client(ctx)
        if self.name:
            return self.name if fleet_by_name(client, self.name) else None

        prefix = self.name_prefix or DEFAULT_NAME_PREFIX
        names = sorted(
            fleet["Name"]
            for fleet in all_fleets(client)
            if name_prefix_from_name(fleet.get("Name")) == prefix
        )
        if len(names) > 1:
            raise ValueError(
                f"more than one AppStream Fleet named with prefix '{prefix}': {', '.join(names)}"
            )
        return names[0] if names else None

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        client = ctx.client(cls.service)
        try:
            fleet = fleet_by_name(client, ident)
            if fleet is None:
                return None
            tags = client.list_tags_for_resource(ResourceArn=fleet["Arn"]).get("Tags", {})
        except ClientError as exc:
            raise cls.fail("reading", exc, ident) from exc

        vpc = fleet.get("VpcConfig")
        capacity = fleet.get("ComputeCapacityStatus") or {}
        return {
            "name": fleet.get("Name"),
            "name_prefix": name_prefix_from_name(fleet.get("Name")),
            "arn": fleet.get("Arn"),
            "instance_type": fleet.get("InstanceType"),
            "compute_capacity": {"desired_instances": capacity.get("Desired")},
            "image_name": fleet.get("ImageName"),
            "image_arn": fleet.get("ImageArn"),
            "fleet_type": fleet.get("FleetType"),
            "description": fleet.get("Description"),
            "display_name": fleet.get("DisplayName"),
            "disconnect_timeout_in_seconds": fleet.get("DisconnectTimeoutInSeconds"),
            "idle_disconnect_timeout_in_seconds": fleet.get("IdleDisconnectTimeoutInSeconds"),
            "max_user_duration_in_seconds": fleet.get("MaxUserDurationInSeconds"),
            "enable_default_internet_access": fleet.get("EnableDefaultInternetAccess"),
            "iam_role_arn": fleet.get("IamRoleArn"),
            "stream_view": fleet.get("StreamView"),
            "vpc_config": (
                {
                    "subnet_ids": vpc.get("SubnetIds", []),
                    "security_group_ids": vpc.get("SecurityGroupIds", []),
                }
                if vpc
                else None
            ),
            "tags": tags,
            "state": fleet.get("State"),
            "compute_capacity_status": {
                "available": capacity.get("Available"),
                "in_use": capacity.get("InUse"),
                "running": capacity.get("Running"),
            },
        }

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        name = generate_name(self.name, self.name_prefix, DEFAULT_NAME_PREFIX)
        request = {"Name": name, "FleetType": self.fleet_type, **self._settings()}
        if self.tags:
            request["Tags"] = dict(self.tags)
        try:
            self.retry(
                lambda: client.create_fleet(**request),
                retry_codes(RESOURCE_NOT_FOUND, CONCURRENT_MODIFICATION),
            )
        except ClientError as exc:
            raise self.fail("creating", exc, name) from exc

        self._id = name
        self._start(client, name)
        return name

    def _start(self, client: Any, name: str) -> None:
        try:
            client.start_fleet(Name=name)
            fleet_running(client, name, timeout=self.timeout("create"))
        except (WaitError, ClientError) as exc:
            raise self.fail("starting", exc, name) from exc

    def _stop(self, client: Any, name: str, operation: str) -> None:
        try:
            client.stop_fleet(Name=name)
            fleet_stopped(client, name, timeout=self.timeout(operation))
        except (WaitError, ClientError) as exc:
            raise self.fail("stopping", exc, name) from exc

    def update(self, ctx: Context[Project], ident: str, current: dict[str, Any]) -> None:
        client = self.client(ctx)
        changed = self.diff(current)
        restart = bool(changed & STOP_TO_UPDATE) and current.get("state") == "RUNNING"
        if restart:
            self._stop(client, ident, "update")

        if changed - {"tags"}:
            try:
                client.update_fleet(Name=ident, **self._settings())
            except ClientError as exc:
                raise self.fail("updating", exc, ident) from exc

        if "tags" in changed:
            self._update_tags(client, ident, current["arn"], current.get("tags") or {})

        if restart:
            self._start(client, ident)

    def _update_tags(self, client: Any, ident: str, arn: str, old: dict[str, str]) -> None:
        removed = sorted(set(old) - set(self.tags))
        added = {k: v for k, v in self.tags.items() if old.get(k) != v}
        try:
            if removed:
                client.untag_resource(ResourceArn=arn, TagKeys=removed)
            if added:
                client.tag_resource(ResourceArn=arn, Tags=added)
        except ClientError as exc:
            raise self.fail("tagging", exc, ident) from exc

    def delete(self, ctx: Context[Project], ident: str) -> None:
        client = self.client(ctx)
        try:
            fleet = fleet_by_name(client, ident)
            if fleet is None:
                return
            if fleet.get("State") != "STOPPED":
                self._stop(client, ident, "delete")
            client.delete_fleet(Name=ident)
            fleet_deleted(client, ident, timeout=self.timeout("delete"))
        except ClientError as exc:
            if error_code_equals(exc, RESOURCE_NOT_FOUND):
                return
            raise self.fail("deleting", exc, ident) from exc
        except WaitError as exc:
            raise self.fail("waiting for deletion of", exc, ident) from exc


# -- images --


def flatten_image(image: dict[str, Any]) -> dict[str, Any]:
    return {
        "arn": image.get("Arn"),
        "name": image.get("Name"),
        "applications": [
            {
                "name": app.get("Name"),
                "display_name": app.get("DisplayName"),
                "enabled": app.get("Enabled"),
                "icon_url": app.get("IconURL"),
                "launch_path": app.get("LaunchPath"),
                "launch_parameters": app.get("LaunchParameters"),
                "metadata": app.get("Metadata", {}),
            }
            for app in image.get("Applications", [])
        ],
        "app_stream_agent_version": image.get("AppstreamAgentVersion"),
        "base_image_arn": image.get("BaseImageArn"),
        "created_time": isoformat(image.get("CreatedTime")),
        "description": image.get("Description"),
        "display_name": image.get("DisplayName"),
        "image_builder_name": image.get("ImageBuilderName"),
        "image_builder_supported": image.get("ImageBuilderSupported"),
        "platform": image.get("Platform"),
        "public_base_image_released_date": isoformat(image.get("PublicBaseImageReleasedDate")),
        "state": image.get("State"),
        "visibility": image.get("Visibility"),
    }


VisibilityType = Literal["PUBLIC", "PRIVATE", "SHARED"]


@data_source("appstream_image")
class AppStreamImage(DataSource):
    """Look up exactly one image by name, ARN or visibility."""

    service = SERVICE

    arn: str | None = None
    name: str | None = None
    type: VisibilityType | None = None

    def read(self, ctx: Context[Project]) -> dict[str, Any]:
        request = drop_empty(
            {
                "Names": [self.name] if self.name else None,
                "Arns": [self.arn] if self.arn else None,
                "Type": self.type,
            }
        )
        images = ctx.client(self.service).describe_images(**request).get("Images") or []
        if not images:
            raise NotFoundError(
                "your query returned no results. please change your search criteria and try again"
            )
        if len(images) > 1:
            raise ValueError(
                "your query returned more than one result. please change your search criteria and try again"
            )
        return flatten_image(images[0])


@data_source("appstream_images")
class AppStreamImages(DataSource):
    """Look up every image matching the given names, ARNs or visibility."""

    service = SERVICE

    arns: frozenset[str] = frozenset()
    names: frozenset[str] = frozenset()
    type: VisibilityType | None = None

    def read(self, ctx: Context[Project]) -> dict[str, Any]:
        request = drop_empty(
            {
                "Names": string_set(self.names),
                "Arns": string_set(self.arns),
                "Type": self.type,
            }
        )
        paginator = ctx.client(self.service).get_paginator("describe_images")
        results = [
            flatten_image(image)
            for page in paginator.paginate(**request)
            for image in page.get("Images", [])
        ]
        return {"results": results}
