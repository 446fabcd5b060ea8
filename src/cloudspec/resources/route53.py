"""Route 53 traffic policies and traffic policy instances."""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError
from pydantic import Field, field_validator

from ..aws import error_code_equals, retry_codes
from ..context import Context
from ..errors import WaitError
from ..projects import Project
from ..resource import Resource, drop_empty
from ..spec import spec
from ..waiter import GONE, NotFound, PollResult, StatusFetcher, WaitSpec, wait

logger = logging.getLogger(__name__)

SERVICE = "route53"

TRAFFIC_POLICY_TIMEOUT = 4 * 60.0
TRAFFIC_POLICY_INSTANCE_TIMEOUT = 4 * 60.0

# (min_delay, max_delay) between instance polls, in seconds
INSTANCE_POLL_DELAY = (2.0, 10.0)

NO_SUCH_TRAFFIC_POLICY = "NoSuchTrafficPolicy"
NO_SUCH_TRAFFIC_POLICY_INSTANCE = "NoSuchTrafficPolicyInstance"


def traffic_policy_summary(client: Any, policy_id: str) -> dict[str, Any] | None:
    """Find a policy's summary (latest version etc.) by walking ListTrafficPolicies."""
    request: dict[str, Any] = {}
    while True:
        output = client.list_traffic_policies(**request)
        for summary in output.get("TrafficPolicySummaries", []):
            if summary.get("Id") == policy_id:
                return summary
        if not output.get("IsTruncated"):
            return None
        request["TrafficPolicyIdMarker"] = output["TrafficPolicyIdMarker"]


def traffic_policy_versions(client: Any, policy_id: str) -> list[dict[str, Any]]:
    """List every version of a traffic policy."""
    versions: list[dict[str, Any]] = []
    request: dict[str, Any] = {"Id": policy_id}
    while True:
        output = client.list_traffic_policy_versions(**request)
        versions.extend(output.get("TrafficPolicies", []))
        if not output.get("IsTruncated"):
            return versions
        request["TrafficPolicyVersionMarker"] = output["TrafficPolicyVersionMarker"]


def traffic_policy_instance_state(client: Any, instance_id: str) -> StatusFetcher:
    def fetch() -> PollResult:
        try:
            output = client.get_traffic_policy_instance(Id=instance_id)
        except ClientError as exc:
            if error_code_equals(exc, NO_SUCH_TRAFFIC_POLICY_INSTANCE):
                return PollResult()
            raise
        instance = output.get("TrafficPolicyInstance")
        if instance is None:
            return PollResult()
        return PollResult(instance, instance.get("State", ""))

    return fetch


def traffic_policy_instance_applied(
    client: Any, instance_id: str, *, timeout: float = TRAFFIC_POLICY_INSTANCE_TIMEOUT
) -> dict[str, Any]:
    spec_ = WaitSpec(
        pending={"Creating", "Updating"},
        target={"Applied"},
        fatal={"Failed"},
        timeout=timeout,
        min_delay=INSTANCE_POLL_DELAY[0],
        max_delay=INSTANCE_POLL_DELAY[1],
    )
    return wait(spec_, traffic_policy_instance_state(client, instance_id))


def traffic_policy_instance_deleted(
    client: Any, instance_id: str, *, timeout: float = TRAFFIC_POLICY_INSTANCE_TIMEOUT
) -> None:
    spec_ = WaitSpec(
        pending={"Applied", "Deleting"},
        target={GONE},
        timeout=timeout,
        min_delay=INSTANCE_POLL_DELAY[0],
        max_delay=INSTANCE_POLL_DELAY[1],
        not_found=NotFound.GONE,
    )
    wait(spec_, traffic_policy_instance_state(client, instance_id))


@spec("route53_traffic_policy")
class TrafficPolicy(Resource):
    """A versioned traffic policy document."""

    kind = "Route53 Traffic Policy"
    service = SERVICE
    default_timeout = TRAFFIC_POLICY_TIMEOUT
    force_new = frozenset({"name"})

    name: str = Field(max_length=512)
    document: str = Field(max_length=102400)
    comment: str | None = Field(default=None, max_length=1024)

    @property
    def label(self) -> str:
        return self.name

    def find(self, ctx: Context[Project]) -> str | None:
        client = self.client(ctx)
        request: dict[str, Any] = {}
        while True:
            output = client.list_traffic_policies(**request)
            for summary in output.get("TrafficPolicySummaries", []):
                if summary.get("Name") == self.name:
                    return summary["Id"]
            if not output.get("IsTruncated"):
                return None
            request["TrafficPolicyIdMarker"] = output["TrafficPolicyIdMarker"]

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        client = ctx.client(cls.service)
        policy_id, _, version = ident.partition("/")
        try:
            summary = traffic_policy_summary(client, policy_id)
            if summary is None:
                return None
            output = client.get_traffic_policy(
                Id=policy_id,
                Version=int(version) if version else summary["LatestVersion"],
            )
        except ClientError as exc:
            if error_code_equals(exc, NO_SUCH_TRAFFIC_POLICY):
                return None
            raise cls.fail("reading", exc, ident) from exc

        policy = output["TrafficPolicy"]
        return {
            "name": policy.get("Name"),
            "document": policy.get("Document"),
            "comment": policy.get("Comment"),
            "type": policy.get("Type"),
            "version": policy.get("Version"),
        }

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        request = drop_empty({"Name": self.name, "Document": self.document, "Comment": self.comment})
        try:
            output = self.retry(
                lambda: client.create_traffic_policy(**request),
                retry_codes(NO_SUCH_TRAFFIC_POLICY),
            )
        except ClientError as exc:
            raise self.fail("creating", exc, self.name) from exc
        return output["TrafficPolicy"]["Id"]

    def update(self, ctx: Context[Project], ident: str, current: dict[str, Any]) -> None:
        request = drop_empty({"Id": ident, "Document": self.document, "Comment": self.comment})
        try:
            self.client(ctx).create_traffic_policy_version(**request)
        except ClientError as exc:
            raise self.fail("updating", exc, ident) from exc

    def delete(self, ctx: Context[Project], ident: str) -> None:
        client = self.client(ctx)
        try:
            versions = traffic_policy_versions(client, ident)
        except ClientError as exc:
            if error_code_equals(exc, NO_SUCH_TRAFFIC_POLICY):
                return
            raise self.fail("listing versions of", exc, ident) from exc

        for policy in versions:
            try:
                client.delete_traffic_policy(Id=policy["Id"], Version=policy["Version"])
            except ClientError as exc:
                if error_code_equals(exc, NO_SUCH_TRAFFIC_POLICY):
                    return
                raise self.fail("deleting", exc, f"{policy['Id']}/{policy['Version']}") from exc

    @classmethod
    def import_state(cls, ctx: Context[Project], ident: str) -> TrafficPolicy:
        """Import by ``policy-id/version``."""
        policy_id, sep, version = ident.partition("/")
        if not sep or not policy_id or not version.isdigit():
            raise ValueError(
                f"unexpected format of ID ('{ident}'), expected traffic-policy-id/traffic-policy-version"
            )
        obj = super().import_state(ctx, ident)
        obj._id = policy_id
        return obj


@spec("route53_traffic_policy_instance")
class TrafficPolicyInstance(Resource):
    """Records created in a hosted zone from a traffic policy version."""

    kind = "Route53 Traffic Policy Instance"
    service = SERVICE
    default_timeout = TRAFFIC_POLICY_INSTANCE_TIMEOUT
    force_new = frozenset({"hosted_zone_id", "name"})

    hosted_zone_id: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=1024)
    traffic_policy_id: str = Field(min_length=1, max_length=36)
    traffic_policy_version: int = Field(ge=1, le=1000)
    ttl: int = Field(ge=0, le=2147483647)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return value.removesuffix(".").lower()

    @property
    def label(self) -> str:
        return self.name

    def find(self, ctx: Context[Project]) -> str | None:
        client = self.client(ctx)
        request: dict[str, Any] = {"HostedZoneId": self.hosted_zone_id}
        while True:
            output = client.list_traffic_policy_instances_by_hosted_zone(**request)
            for instance in output.get("TrafficPolicyInstances", []):
                if instance.get("Name", "").removesuffix(".").lower() == self.name:
                    return instance["Id"]
            if not output.get("IsTruncated"):
                return None
            request["TrafficPolicyInstanceNameMarker"] = output["TrafficPolicyInstanceNameMarker"]
            request["TrafficPolicyInstanceTypeMarker"] = output["TrafficPolicyInstanceTypeMarker"]

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        try:
            output = ctx.client(cls.service).get_traffic_policy_instance(Id=ident)
        except ClientError as exc:
            if error_code_equals(exc, NO_SUCH_TRAFFIC_POLICY_INSTANCE):
                return None
            raise cls.fail("reading", exc, ident) from exc

        instance = output["TrafficPolicyInstance"]
        return {
            "hosted_zone_id": instance.get("HostedZoneId"),
            "name": instance.get("Name", "").removesuffix("."),
            "traffic_policy_id": instance.get("TrafficPolicyId"),
            "traffic_policy_version": instance.get("TrafficPolicyVersion"),
            "ttl": instance.get("TTL"),
            "state": instance.get("State"),
            "message": instance.get("Message"),
        }

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        request = {
            "HostedZoneId": self.hosted_zone_id,
            "Name": self.name,
            "TrafficPolicyId": self.traffic_policy_id,
            "TrafficPolicyVersion": self.traffic_policy_version,
            "TTL": self.ttl,
        }
        try:
            output = self.retry(
                lambda: client.create_traffic_policy_instance(**request),
                retry_codes(NO_SUCH_TRAFFIC_POLICY_INSTANCE),
            )
        except ClientError as exc:
            raise self.fail("creating", exc, self.name) from exc

        ident = output["TrafficPolicyInstance"]["Id"]
        try:
            traffic_policy_instance_applied(client, ident, timeout=self.timeout("create"))
        except (WaitError, ClientError) as exc:
            raise self.fail("waiting for", exc, ident) from exc
        return ident

    def update(self, ctx: Context[Project], ident: str, current: dict[str, Any]) -> None:
        client = self.client(ctx)
        try:
            client.update_traffic_policy_instance(
                Id=ident,
                TrafficPolicyId=self.traffic_policy_id,
                TrafficPolicyVersion=self.traffic_policy_version,
                TTL=self.ttl,
            )
            traffic_policy_instance_applied(client, ident, timeout=self.timeout("update"))
        except (WaitError, ClientError) as exc:
            raise self.fail("updating", exc, ident) from exc

    def delete(self, ctx: Context[Project], ident: str) -> None:
        client = self.client(ctx)
        try:
            client.delete_traffic_policy_instance(Id=ident)
            traffic_policy_instance_deleted(client, ident, timeout=self.timeout("delete"))
        except ClientError as exc:
            if error_code_equals(exc, NO_SUCH_TRAFFIC_POLICY_INSTANCE):
                return
            raise self.fail("deleting", exc, ident) from exc
        except WaitError as exc:
            raise self.fail("waiting for deletion of", exc, ident) from exc
