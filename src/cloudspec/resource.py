"""Resource and DataSource bases: pydantic attribute models backed by AWS calls."""

from __future__ import annotations

import logging
import re
import time
import uuid
from abc import abstractmethod
from collections.abc import Callable, Iterable
from typing import Annotated, Any, ClassVar, Self, cast

from botocore.exceptions import ClientError
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr

from .context import Context
from .errors import NotFoundError, ResourceError
from .projects import Project
from .retry import retry_call
from .spec import Specification, _data_registry

logger = logging.getLogger(__name__)


def unwrap_block(value: Any) -> Any:
    """Accept a nested HCL block, which parses as a one-element list."""
    if isinstance(value, list):
        if not value:
            return None
        if len(value) > 1:
            raise ValueError(f"expected at most one block, got {len(value)}")
        return value[0]
    return value


Block = BeforeValidator(unwrap_block)


class Attrs(BaseModel):
    """Base for nested attribute blocks; frozen so blocks can live in sets."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class Timeouts(Attrs):
    """Per-operation timeout overrides, in seconds."""

    create: float | None = None
    update: float | None = None
    delete: float | None = None


class Resource(BaseModel, Specification[Project]):
    """A remote object whose declared attributes are pydantic fields.

    Subclasses locate the object by its natural key (``find``), flatten it
    into attributes (``read``) and implement the mutating calls. Diffing
    compares only the attributes that were explicitly declared.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    spec_name: ClassVar[str] = ""
    kind: ClassVar[str] = "resource"
    service: ClassVar[str] = ""
    force_new: ClassVar[frozenset[str]] = frozenset()
    default_timeout: ClassVar[float] = 240.0

    timeouts: Annotated[Timeouts, Block] = Field(default_factory=Timeouts)

    _id: str | None = PrivateAttr(default=None)

    @property
    def label(self) -> str | None:
        """Identity used in log lines; the natural key by default."""
        return self._id

    # -- hooks --

    @abstractmethod
    def find(self, ctx: Context[Project]) -> str | None:
        """Locate the remote object by its natural key; return its id."""

    @classmethod
    @abstractmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        """Flatten the remote object into attributes; None if it is gone."""

    @abstractmethod
    def create(self, ctx: Context[Project]) -> str:
        """Create the remote object and return its id."""

    def update(self, ctx: Context[Project], ident: str, current: dict[str, Any]) -> None:
        """Modify the remote object in place. Defaults to replacement."""
        self.delete(ctx, ident)
        self._id = self.create(ctx)

    @abstractmethod
    def delete(self, ctx: Context[Project], ident: str) -> None:
        """Delete the remote object; absence is not an error."""

    # -- helpers --

    def client(self, ctx: Context[Project]) -> Any:
        return ctx.client(self.service)

    def timeout(self, operation: str) -> float:
        value = getattr(self.timeouts, operation)
        return value if value is not None else self.default_timeout

    def retry(
        self,
        fn: Callable[[], Any],
        retryable: Callable[[BaseException], bool],
        operation: str = "create",
    ) -> Any:
        """Retry an eventually-consistent call within the operation's timeout."""
        return retry_call(fn, timeout=self.timeout(operation), retryable=retryable)

    @classmethod
    def fail(cls, verb: str, cause: BaseException | str, ident: str | None = None) -> ResourceError:
        return ResourceError(verb, cls.kind, ident, cause)

    def declared(self) -> set[str]:
        """Names of the attributes that were explicitly set."""
        return set(self.model_fields_set) - {"timeouts"}

    def diff(self, current: dict[str, Any]) -> set[str]:
        """Declared attributes whose remote value differs."""
        names = self.declared()
        remote = type(self).from_attrs(current)
        return {name for name in names if getattr(self, name) != getattr(remote, name)}

    @classmethod
    def from_attrs(cls, attrs: dict[str, Any]) -> Self:
        """Build an instance from flattened attributes, dropping computed ones."""
        return cls.model_validate({k: v for k, v in attrs.items() if k in cls.model_fields})

    # -- lifecycle --

    def resource_id(self, ctx: Context[Project]) -> str | None:
        if self._id is None:
            self._id = self.find(ctx)
        return self._id

    def state(self, ctx: Context[Project]) -> dict[str, Any] | None:
        """Current remote attributes, or None if the object doesn't exist."""
        ident = self.resource_id(ctx)
        if ident is None:
            return None
        current = type(self).read(ctx, ident)
        if current is None:
            logger.warning("%s (%s) not found, forgetting it", self.kind, ident)
            self._id = None
        return current

    def exists(self, ctx: Context[Project]) -> bool:
        return self.state(ctx) is not None

    def equals(self, ctx: Context[Project]) -> bool:
        current = self.state(ctx)
        return current is not None and not self.diff(current)

    def apply(self, ctx: Context[Project]) -> None:
        current = self.state(ctx)
        if current is None:
            self._id = self.create(ctx)
            logger.info("Created %s (%s)", self.kind, self._id)
            return

        # state() leaves the id set whenever it returns attributes
        ident = cast(str, self._id)
        changed = self.diff(current)
        if not changed:
            return
        if changed & self.force_new:
            logger.info(
                "Replacing %s (%s); changed: %s",
                self.kind,
                ident,
                ", ".join(sorted(changed & self.force_new)),
            )
            self.delete(ctx, ident)
            self._id = self.create(ctx)
        else:
            logger.info("Updating %s (%s); changed: %s", self.kind, ident, ", ".join(sorted(changed)))
            self.update(ctx, ident, current)

    def remove(self, ctx: Context[Project]) -> None:
        ident = self.resource_id(ctx)
        if ident is None:
            return
        self.delete(ctx, ident)
        logger.info("Deleted %s (%s)", self.kind, ident)
        self._id = None

    @classmethod
    def import_state(cls, ctx: Context[Project], ident: str) -> Self:
        """Adopt an existing remote object by id."""
        attrs = cls.read(ctx, ident)
        if attrs is None:
            raise NotFoundError(f"{cls.kind} ({ident}) not found")
        obj = cls.from_attrs(attrs)
        obj._id = ident
        return obj


class DataSource(BaseModel):
    """A read-only lookup; query arguments are pydantic fields."""

    model_config = ConfigDict(extra="forbid")

    spec_name: ClassVar[str] = ""
    service: ClassVar[str] = ""

    @abstractmethod
    def read(self, ctx: Context[Project]) -> dict[str, Any]:
        """Run the lookup and return flattened attributes."""


def lookup(name: str, ctx: Context[Project], **attrs: Any) -> dict[str, Any]:
    """Run the data source registered as ``name``."""
    if name not in _data_registry:
        raise ValueError(f"Unknown data source: '{name}'")
    source = _data_registry[name](**attrs)
    logger.debug("Looking up %s", name)
    try:
        return source.read(ctx)
    except ClientError as exc:
        raise ResourceError("reading", name, None, exc) from exc


def string_set(values: Iterable[str] | None) -> list[str]:
    """Expand a set attribute into a sorted request list."""
    return sorted(values or ())


def drop_empty(mapping: dict[str, Any]) -> dict[str, Any]:
    """Remove request members that are None or empty."""
    return {k: v for k, v in mapping.items() if v not in (None, "", [], {})}


def isoformat(value: Any) -> Any:
    """Render a timestamp returned by botocore as an ISO 8601 string."""
    return value.isoformat() if hasattr(value, "isoformat") else value


# UTC timestamp (14 digits) plus 12 hex digits
UNIQUE_SUFFIX_LENGTH = 26
_UNIQUE_SUFFIX = re.compile(r"\d{14}[0-9a-f]{12}")


def generate_name(name: str | None, prefix: str | None, default_prefix: str) -> str:
    """Return ``name`` if given, else the prefix plus a unique suffix."""
    if name:
        return name
    stamp = time.strftime("%Y%m%d%H%M%S", time.gmtime())
    return f"{prefix or default_prefix}{stamp}{uuid.uuid4().hex[:12]}"


def name_prefix_from_name(name: str | None) -> str | None:
    """The prefix of a name built by ``generate_name``; None for other names."""
    if not name or len(name) <= UNIQUE_SUFFIX_LENGTH:
        return None
    if not _UNIQUE_SUFFIX.fullmatch(name[-UNIQUE_SUFFIX_LENGTH:]):
        return None
    return name[:-UNIQUE_SUFFIX_LENGTH]
