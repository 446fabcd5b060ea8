"""Cost Explorer: anomaly monitors, anomaly subscriptions and cost categories."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Annotated, Any, Literal

from botocore.exceptions import ClientError
from pydantic import ConfigDict, Field

from ..aws import error_code_equals, error_message_contains, retry_codes
from ..context import Context
from ..projects import Project
from ..resource import Attrs, Block, Resource, drop_empty, string_set
from ..spec import spec

logger = logging.getLogger(__name__)

SERVICE = "ce"

COST_CATEGORY_OPERATION_TIMEOUT = 4 * 60.0
ANOMALY_MONITOR_OPERATION_TIMEOUT = 4 * 60.0
ANOMALY_SUBSCRIPTION_OPERATION_TIMEOUT = 4 * 60.0

RESOURCE_NOT_FOUND = "ResourceNotFoundException"
UNKNOWN_MONITOR = "UnknownMonitorException"
UNKNOWN_SUBSCRIPTION = "UnknownSubscriptionException"


# -- cost expressions --


class CostValues(Attrs):
    """Values matched for one dimension, tag or cost category key."""

    key: str | None = None
    match_options: frozenset[str] = frozenset()
    values: frozenset[str] = frozenset()


class Expression(Attrs):
    """A cost filter; ``and``/``or``/``not`` nest further expressions."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    and_: frozenset[Expression] = Field(default=frozenset(), alias="and")
    or_: frozenset[Expression] = Field(default=frozenset(), alias="or")
    not_: Annotated[Expression | None, Block] = Field(default=None, alias="not")
    cost_category: Annotated[CostValues | None, Block] = None
    dimension: Annotated[CostValues | None, Block] = None
    tags: Annotated[CostValues | None, Block] = None


_VALUE_MEMBERS = {
    "cost_category": "CostCategories",
    "dimension": "Dimensions",
    "tags": "Tags",
}


def expand_values(values: CostValues) -> dict[str, Any]:
    return drop_empty(
        {
            "Key": values.key,
            "MatchOptions": string_set(values.match_options),
            "Values": string_set(values.values),
        }
    )


def flatten_values(api: dict[str, Any] | None) -> dict[str, Any] | None:
    if not api:
        return None
    return {
        "key": api.get("Key"),
        "match_options": api.get("MatchOptions", []),
        "values": api.get("Values", []),
    }


def expand_expression(expr: Expression) -> dict[str, Any]:
    """Convert an expression into the Cost Explorer request shape."""
    api: dict[str, Any] = {}
    if expr.and_:
        api["And"] = [expand_expression(item) for item in expr.and_]
    if expr.or_:
        api["Or"] = [expand_expression(item) for item in expr.or_]
    if expr.not_ is not None:
        api["Not"] = expand_expression(expr.not_)
    for name, member in _VALUE_MEMBERS.items():
        values = getattr(expr, name)
        if values is not None:
            api[member] = expand_values(values)
    return api


def flatten_expression(api: dict[str, Any] | None) -> dict[str, Any] | None:
    """Convert a Cost Explorer expression back into attribute form."""
    if not api:
        return None
    attrs: dict[str, Any] = {}
    if api.get("And"):
        attrs["and"] = [flatten_expression(item) for item in api["And"]]
    if api.get("Or"):
        attrs["or"] = [flatten_expression(item) for item in api["Or"]]
    if api.get("Not"):
        attrs["not"] = flatten_expression(api["Not"])
    for name, member in _VALUE_MEMBERS.items():
        values = flatten_values(api.get(member))
        if values is not None:
            attrs[name] = values
    return attrs


def _pages(call: Any, token: str, items: str, **request: Any) -> Iterator[dict[str, Any]]:
    """Walk a Cost Explorer listing that pages with ``token``."""
    while True:
        output = call(**request)
        yield from output.get(items, [])
        if not output.get(token):
            return
        request[token] = output[token]


# -- anomaly monitors --


@spec("ce_anomaly_monitor")
class AnomalyMonitor(Resource):
    """A cost anomaly monitor."""

    kind = "CE Anomaly Monitor"
    service = SERVICE
    default_timeout = ANOMALY_MONITOR_OPERATION_TIMEOUT
    force_new = frozenset({"monitor_type", "monitor_dimension", "monitor_specification"})

    monitor_name: str = Field(max_length=1024)
    monitor_type: Literal["DIMENSIONAL", "CUSTOM"]
    monitor_dimension: Literal["SERVICE"] | None = None
    monitor_specification: Annotated[Expression | None, Block] = None

    @property
    def label(self) -> str:
        return self.monitor_name

    def find(self, ctx: Context[Project]) -> str | None:
        monitors = _pages(
            self.client(ctx).get_anomaly_monitors, "NextPageToken", "AnomalyMonitors"
        )
        for monitor in monitors:
            if monitor.get("MonitorName") == self.monitor_name:
                return monitor["MonitorArn"]
        return None

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        try:
            output = ctx.client(cls.service).get_anomaly_monitors(MonitorArnList=[ident])
        except ClientError as exc:
            if error_code_equals(exc, RESOURCE_NOT_FOUND, UNKNOWN_MONITOR):
                return None
            raise cls.fail("reading", exc, ident) from exc

        monitors = output.get("AnomalyMonitors") or []
        if not monitors:
            return None
        monitor = monitors[0]
        return {
            "monitor_name": monitor.get("MonitorName"),
            "monitor_type": monitor.get("MonitorType"),
            "monitor_dimension": monitor.get("MonitorDimension"),
            "monitor_specification": flatten_expression(monitor.get("MonitorSpecification")),
            "creation_date": monitor.get("CreationDate"),
            "last_updated_date": monitor.get("LastUpdatedDate"),
            "last_evaluated_date": monitor.get("LastEvaluatedDate"),
            "dimensional_value_count": monitor.get("DimensionalValueCount"),
        }

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        monitor: dict[str, Any] = drop_empty(
            {
                "MonitorName": self.monitor_name,
                "MonitorType": self.monitor_type,
                "MonitorDimension": self.monitor_dimension,
            }
        )
        if self.monitor_specification is not None:
            monitor["MonitorSpecification"] = expand_expression(self.monitor_specification)
        try:
            output = self.retry(
                lambda: client.create_anomaly_monitor(AnomalyMonitor=monitor),
                retry_codes(RESOURCE_NOT_FOUND),
            )
        except ClientError as exc:
            raise self.fail("creating", exc, self.monitor_name) from exc
        return output["MonitorArn"]

    def update(self, ctx: Context[Project], ident: str, current: dict[str, Any]) -> None:
        try:
            self.client(ctx).update_anomaly_monitor(MonitorArn=ident, MonitorName=self.monitor_name)
        except ClientError as exc:
            raise self.fail("updating", exc, ident) from exc

    def delete(self, ctx: Context[Project], ident: str) -> None:
        try:
            self.client(ctx).delete_anomaly_monitor(MonitorArn=ident)
        except ClientError as exc:
            if error_code_equals(exc, RESOURCE_NOT_FOUND, UNKNOWN_MONITOR):
                return
            raise self.fail("deleting", exc, ident) from exc


# -- anomaly subscriptions --


class Subscriber(Attrs):
    address: str | None = Field(default=None, min_length=6, max_length=302)
    type: Literal["EMAIL", "SNS"] | None = None
    status: Literal["CONFIRMED", "DECLINED"] | None = None


def _subscription_gone(exc: ClientError) -> bool:
    return error_code_equals(exc, RESOURCE_NOT_FOUND) or error_message_contains(
        exc, UNKNOWN_SUBSCRIPTION, "No anomaly subscription"
    )


@spec("ce_anomaly_subscription")
class AnomalySubscription(Resource):
    """Notifications for anomalies detected by one or more monitors."""

    kind = "CE Anomaly Subscription"
    service = SERVICE
    default_timeout = ANOMALY_SUBSCRIPTION_OPERATION_TIMEOUT

    subscription_name: str = Field(max_length=1024)
    frequency: Literal["DAILY", "IMMEDIATE", "WEEKLY"]
    monitor_arn_list: frozenset[str]
    subscriber: frozenset[Subscriber]
    threshold: float = Field(ge=0.0)

    @property
    def label(self) -> str:
        return self.subscription_name

    def _subscribers(self) -> list[dict[str, Any]]:
        return [
            drop_empty({"Address": s.address, "Type": s.type, "Status": s.status})
            for s in self.subscriber
        ]

    def find(self, ctx: Context[Project]) -> str | None:
        subscriptions = _pages(
            self.client(ctx).get_anomaly_subscriptions, "NextPageToken", "AnomalySubscriptions"
        )
        for subscription in subscriptions:
            if subscription.get("SubscriptionName") == self.subscription_name:
                return subscription["SubscriptionArn"]
        return None

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        try:
            output = ctx.client(cls.service).get_anomaly_subscriptions(SubscriptionArnList=[ident])
        except ClientError as exc:
            if _subscription_gone(exc):
                return None
            raise cls.fail("reading", exc, ident) from exc

        subscriptions = output.get("AnomalySubscriptions") or []
        if not subscriptions:
            return None
        subscription = subscriptions[0]
        return {
            "subscription_name": subscription.get("SubscriptionName"),
            "frequency": subscription.get("Frequency"),
            "monitor_arn_list": subscription.get("MonitorArnList", []),
            "subscriber": [
                {"address": s.get("Address"), "type": s.get("Type"), "status": s.get("Status")}
                for s in subscription.get("Subscribers", [])
            ],
            "threshold": subscription.get("Threshold"),
            "account_id": subscription.get("AccountId"),
        }

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        subscription = {
            "SubscriptionName": self.subscription_name,
            "Frequency": self.frequency,
            "MonitorArnList": string_set(self.monitor_arn_list),
            "Subscribers": self._subscribers(),
            "Threshold": self.threshold,
        }
        try:
            output = self.retry(
                lambda: client.create_anomaly_subscription(AnomalySubscription=subscription),
                retry_codes(RESOURCE_NOT_FOUND),
            )
        except ClientError as exc:
            raise self.fail("creating", exc, self.subscription_name) from exc
        return output["SubscriptionArn"]

    def update(self, ctx: Context[Project], ident: str, current: dict[str, Any]) -> None:
        changed = self.diff(current)
        request: dict[str, Any] = {"SubscriptionArn": ident}
        if "frequency" in changed:
            request["Frequency"] = self.frequency
        if "subscriber" in changed:
            request["Subscribers"] = self._subscribers()
        if "monitor_arn_list" in changed:
            request["MonitorArnList"] = string_set(self.monitor_arn_list)
        if "subscription_name" in changed:
            request["SubscriptionName"] = self.subscription_name
        if "threshold" in changed:
            request["Threshold"] = self.threshold
        try:
            self.client(ctx).update_anomaly_subscription(**request)
        except ClientError as exc:
            raise self.fail("updating", exc, ident) from exc

    def delete(self, ctx: Context[Project], ident: str) -> None:
        try:
            self.client(ctx).delete_anomaly_subscription(SubscriptionArn=ident)
        except ClientError as exc:
            if _subscription_gone(exc):
                return
            raise self.fail("deleting", exc, ident) from exc


# -- cost categories --


class InheritedValue(Attrs):
    dimension_key: str | None = Field(default=None, max_length=1024)
    dimension_name: Literal["LINKED_ACCOUNT_NAME", "TAG"] | None = None


class CostCategoryRule(Attrs):
    inherited_value: Annotated[InheritedValue | None, Block] = None
    rule: Annotated[Expression | None, Block] = None
    type: Literal["REGULAR", "INHERITED_VALUE"] = "REGULAR"
    value: str | None = Field(default=None, min_length=1, max_length=50)


class SplitChargeParameter(Attrs):
    type: Literal["ALLOCATION_PERCENTAGES"] | None = None
    values: frozenset[str] = frozenset()


class SplitChargeRule(Attrs):
    method: Literal["FIXED", "PROPORTIONAL", "EVEN"] | None = None
    parameter: frozenset[SplitChargeParameter] = frozenset()
    source: str | None = None
    targets: frozenset[str] = frozenset()


def expand_rule(rule: CostCategoryRule) -> dict[str, Any]:
    api: dict[str, Any] = drop_empty({"Type": rule.type, "Value": rule.value})
    if rule.inherited_value is not None:
        api["InheritedValue"] = drop_empty(
            {
                "DimensionKey": rule.inherited_value.dimension_key,
                "DimensionName": rule.inherited_value.dimension_name,
            }
        )
    if rule.rule is not None:
        api["Rule"] = expand_expression(rule.rule)
    return api


def flatten_rule(api: dict[str, Any]) -> dict[str, Any]:
    inherited = api.get("InheritedValue")
    return {
        "inherited_value": (
            {
                "dimension_key": inherited.get("DimensionKey"),
                "dimension_name": inherited.get("DimensionName"),
            }
            if inherited
            else None
        ),
        "rule": flatten_expression(api.get("Rule")),
        "type": api.get("Type", "REGULAR"),
        "value": api.get("Value"),
    }


def expand_split_charge_rule(rule: SplitChargeRule) -> dict[str, Any]:
    return drop_empty(
        {
            "Method": rule.method,
            "Parameters": [
                drop_empty({"Type": p.type, "Values": string_set(p.values)}) for p in rule.parameter
            ],
            "Source": rule.source,
            "Targets": string_set(rule.targets),
        }
    )


def flatten_split_charge_rule(api: dict[str, Any]) -> dict[str, Any]:
    return {
        "method": api.get("Method"),
        "parameter": [
            {"type": p.get("Type"), "values": p.get("Values", [])} for p in api.get("Parameters", [])
        ],
        "source": api.get("Source"),
        "targets": api.get("Targets", []),
    }


@spec("ce_cost_category")
class CostCategory(Resource):
    """A cost category definition with its mapping rules."""

    kind = "CE Cost Category Definition"
    service = SERVICE
    default_timeout = COST_CATEGORY_OPERATION_TIMEOUT
    force_new = frozenset({"name", "rule_version"})

    name: str = Field(min_length=1, max_length=50)
    rule: frozenset[CostCategoryRule] = Field(min_length=1)
    rule_version: Literal["CostCategoryExpression.v1"] = "CostCategoryExpression.v1"
    default_value: str | None = Field(default=None, min_length=1, max_length=50)
    split_charge_rule: frozenset[SplitChargeRule] = frozenset()

    @property
    def label(self) -> str:
        return self.name

    def _request(self) -> dict[str, Any]:
        return drop_empty(
            {
                "RuleVersion": self.rule_version,
                "Rules": [expand_rule(rule) for rule in self.rule],
                "DefaultValue": self.default_value,
                "SplitChargeRules": [expand_split_charge_rule(r) for r in self.split_charge_rule],
            }
        )

    def find(self, ctx: Context[Project]) -> str | None:
        references = _pages(
            self.client(ctx).list_cost_category_definitions, "NextToken", "CostCategoryReferences"
        )
        for reference in references:
            if reference.get("Name") == self.name and not reference.get("EffectiveEnd"):
                return reference["CostCategoryArn"]
        return None

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        try:
            output = ctx.client(cls.service).describe_cost_category_definition(CostCategoryArn=ident)
        except ClientError as exc:
            if error_code_equals(exc, RESOURCE_NOT_FOUND):
                return None
            raise cls.fail("reading", exc, ident) from exc

        category = output["CostCategory"]
        return {
            "name": category.get("Name"),
            "rule": [flatten_rule(rule) for rule in category.get("Rules", [])],
            "rule_version": category.get("RuleVersion"),
            "default_value": category.get("DefaultValue"),
            "split_charge_rule": [
                flatten_split_charge_rule(rule) for rule in category.get("SplitChargeRules", [])
            ],
            "effective_start": category.get("EffectiveStart"),
            "effective_end": category.get("EffectiveEnd"),
        }

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        request = {"Name": self.name, **self._request()}
        logger.debug("CreateCostCategoryDefinition request: %s", request)
        try:
            output = self.retry(
                lambda: client.create_cost_category_definition(**request),
                retry_codes(RESOURCE_NOT_FOUND),
            )
        except ClientError as exc:
            raise self.fail("creating", exc, self.name) from exc
        return output["CostCategoryArn"]

    def update(self, ctx: Context[Project], ident: str, current: dict[str, Any]) -> None:
        try:
            self.client(ctx).update_cost_category_definition(CostCategoryArn=ident, **self._request())
        except ClientError as exc:
            raise self.fail("updating", exc, ident) from exc

    def delete(self, ctx: Context[Project], ident: str) -> None:
        try:
            self.client(ctx).delete_cost_category_definition(CostCategoryArn=ident)
        except ClientError as exc:
            if error_code_equals(exc, RESOURCE_NOT_FOUND):
                return
            raise self.fail("deleting", exc, ident) from exc
