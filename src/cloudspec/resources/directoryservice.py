"""Directory Service: directory sharing between accounts."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal

from botocore.exceptions import ClientError
from pydantic import Field

from ..aws import error_code_equals, retry_codes
from ..context import Context
from ..errors import FatalStateError, NotFoundError, WaitError
from ..projects import Project
from ..resource import Attrs, Block, Resource, drop_empty, isoformat
from ..spec import spec
from ..waiter import GONE, NotFound, PollResult, StatusFetcher, WaitSpec, wait

logger = logging.getLogger(__name__)

SERVICE = "ds"

DIRECTORY_CREATED_TIMEOUT = 60 * 60.0
DIRECTORY_DELETED_TIMEOUT = 60 * 60.0
SHARE_OPERATION_TIMEOUT = 4 * 60.0
SHARE_DELETED_TIMEOUT = 5 * 60.0

# (min_delay, max_delay) between polls, in seconds
DIRECTORY_POLL_DELAY = (5.0, 30.0)
SHARE_POLL_DELAY = (2.0, 10.0)

ENTITY_DOES_NOT_EXIST = "EntityDoesNotExistException"
DIRECTORY_DOES_NOT_EXIST = "DirectoryDoesNotExistException"
DIRECTORY_NOT_SHARED = "DirectoryNotSharedException"


# -- finders --


def directory_by_id(client: Any, directory_id: str) -> dict[str, Any]:
    """Describe one directory; NotFoundError if it is missing or deleted."""
    try:
        output = client.describe_directories(DirectoryIds=[directory_id])
    except ClientError as exc:
        if error_code_equals(exc, ENTITY_DOES_NOT_EXIST):
            raise NotFoundError(f"directory {directory_id} not found") from exc
        raise

    directories = output.get("DirectoryDescriptions") or []
    if not directories:
        raise NotFoundError(f"directory {directory_id}: empty result")

    directory = directories[0]
    if directory.get("Stage") == "Deleted":
        raise NotFoundError(f"directory {directory_id} is deleted")
    return directory


def shared_directory_by_id(
    client: Any, directory_id: str, shared_directory_id: str
) -> dict[str, Any] | None:
    """Describe one share of an owner directory; None if there is no such share."""
    output = client.describe_shared_directories(
        OwnerDirectoryId=directory_id,
        SharedDirectoryIds=[shared_directory_id],
    )
    shares = output.get("SharedDirectories") or []
    if len(shares) > 1:
        raise ValueError(
            f"got more than one shared directory with the shared id: {shared_directory_id} "
            f"and directory id: {directory_id}"
        )
    return shares[0] if shares else None


# -- status fetchers --


def directory_stage(client: Any, directory_id: str) -> StatusFetcher:
    def fetch() -> PollResult:
        try:
            directory = directory_by_id(client, directory_id)
        except NotFoundError:
            return PollResult()
        return PollResult(directory, directory.get("Stage", ""))

    return fetch


def share_status(client: Any, directory_id: str, shared_directory_id: str) -> StatusFetcher:
    def fetch() -> PollResult:
        share = shared_directory_by_id(client, directory_id, shared_directory_id)
        if share is None:
            return PollResult()
        return PollResult(share, share.get("ShareStatus", ""))

    return fetch


# -- waiters --


def directory_created(
    client: Any, directory_id: str, *, timeout: float = DIRECTORY_CREATED_TIMEOUT
) -> dict[str, Any]:
    spec_ = WaitSpec(
        pending={"Requested", "Creating", "Created"},
        target={"Active"},
        fatal={"Failed"},
        timeout=timeout,
        min_delay=DIRECTORY_POLL_DELAY[0],
        max_delay=DIRECTORY_POLL_DELAY[1],
    )
    return _with_stage_reason(spec_, directory_stage(client, directory_id))


def directory_deleted(
    client: Any, directory_id: str, *, timeout: float = DIRECTORY_DELETED_TIMEOUT
) -> None:
    spec_ = WaitSpec(
        pending={"Active", "Deleting"},
        target={GONE},
        timeout=timeout,
        min_delay=DIRECTORY_POLL_DELAY[0],
        max_delay=DIRECTORY_POLL_DELAY[1],
        not_found=NotFound.GONE,
    )
    _with_stage_reason(spec_, directory_stage(client, directory_id))


def _with_stage_reason(spec_: WaitSpec, fetch: StatusFetcher) -> Any:
    """Wait, adding the directory's StageReason to failures."""
    try:
        return wait(spec_, fetch)
    except WaitError as exc:
        reason = (exc.resource or {}).get("StageReason")
        if reason:
            exc.add_note(f"stage reason: {reason}")
        raise


def share_shared(
    client: Any, directory_id: str, shared_directory_id: str, *, timeout: float = SHARE_OPERATION_TIMEOUT
) -> dict[str, Any]:
    spec_ = WaitSpec(
        pending={"Sharing"},
        target={"Shared"},
        fatal={"ShareFailed"},
        timeout=timeout,
        min_delay=SHARE_POLL_DELAY[0],
        max_delay=SHARE_POLL_DELAY[1],
    )
    return wait(spec_, share_status(client, directory_id, shared_directory_id))


def share_pending_acceptance(
    client: Any, directory_id: str, shared_directory_id: str, *, timeout: float = SHARE_OPERATION_TIMEOUT
) -> dict[str, Any]:
    spec_ = WaitSpec(
        pending={"Sharing"},
        target={"PendingAcceptance"},
        fatal={"ShareFailed"},
        timeout=timeout,
        min_delay=SHARE_POLL_DELAY[0],
        max_delay=SHARE_POLL_DELAY[1],
    )
    return wait(spec_, share_status(client, directory_id, shared_directory_id))


def share_deleted(
    client: Any, directory_id: str, shared_directory_id: str, *, timeout: float = SHARE_DELETED_TIMEOUT
) -> None:
    spec_ = WaitSpec(
        pending={"Deleting", "Shared", "PendingAcceptance", "Rejecting"},
        target={"Deleted", GONE},
        timeout=timeout,
        min_delay=SHARE_POLL_DELAY[0],
        max_delay=SHARE_POLL_DELAY[1],
        not_found=NotFound.GONE,
    )
    wait(spec_, share_status(client, directory_id, shared_directory_id))


# -- resources --


class ShareTarget(Attrs):
    id: str = Field(min_length=1, max_length=64)
    type: Literal["ACCOUNT"] = "ACCOUNT"


def parse_share_id(ident: str) -> tuple[str, str]:
    parts = ident.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(
            f"expected ID in the form of DIRECTORY-ID/SHARED-DIRECTORY-ID, given: '{ident}'"
        )
    return parts[0], parts[1]


@spec("directory_share")
class ShareDirectory(Resource):
    """Share a directory with another account."""

    kind = "Directory Service Share Directory"
    service = SERVICE
    default_timeout = SHARE_OPERATION_TIMEOUT
    force_new = frozenset({"directory_id", "share_method", "share_notes", "share_target"})

    directory_id: str
    share_method: Literal["ORGANIZATIONS", "HANDSHAKE"]
    share_target: Annotated[ShareTarget, Block]
    share_notes: str | None = Field(default=None, max_length=1024)

    @property
    def label(self) -> str:
        return f"{self.directory_id} -> {self.share_target.id}"

    def find(self, ctx: Context[Project]) -> str | None:
        paginator = self.client(ctx).get_paginator("describe_shared_directories")
        for page in paginator.paginate(OwnerDirectoryId=self.directory_id):
            for share in page.get("SharedDirectories", []):
                if share.get("SharedAccountId") != self.share_target.id:
                    continue
                if share.get("ShareStatus") in ("Deleted", "Deleting", "Rejected"):
                    continue
                return f"{self.directory_id}/{share['SharedDirectoryId']}"
        return None

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        directory_id, shared_directory_id = parse_share_id(ident)
        client = ctx.client(cls.service)
        try:
            share = shared_directory_by_id(client, directory_id, shared_directory_id)
        except ClientError as exc:
            if error_code_equals(exc, ENTITY_DOES_NOT_EXIST, DIRECTORY_NOT_SHARED):
                return None
            raise cls.fail("reading", exc, ident) from exc
        if share is None or share.get("ShareStatus") == "Deleted":
            return None

        return {
            "directory_id": directory_id,
            "share_method": share.get("ShareMethod"),
            "share_notes": share.get("ShareNotes"),
            "share_target": {"id": share.get("SharedAccountId"), "type": "ACCOUNT"},
            "owner_account_id": share.get("OwnerAccountId"),
            "owner_directory_id": share.get("OwnerDirectoryId"),
            "shared_account_id": share.get("SharedAccountId"),
            "shared_directory_id": share.get("SharedDirectoryId"),
            "share_status": share.get("ShareStatus"),
            "created_date_time": isoformat(share.get("CreatedDateTime")),
            "last_updated_date_time": isoformat(share.get("LastUpdatedDateTime")),
        }

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        request = drop_empty(
            {
                "DirectoryId": self.directory_id,
                "ShareMethod": self.share_method,
                "ShareTarget": {"Id": self.share_target.id, "Type": self.share_target.type},
                "ShareNotes": self.share_notes,
            }
        )
        try:
            output = self.retry(
                lambda: client.share_directory(**request),
                retry_codes(DIRECTORY_DOES_NOT_EXIST),
            )
        except ClientError as exc:
            raise self.fail("creating", exc, self.directory_id) from exc

        shared_directory_id = output["SharedDirectoryId"]
        ident = f"{self.directory_id}/{shared_directory_id}"
        waiter = share_shared if self.share_method == "ORGANIZATIONS" else share_pending_acceptance
        try:
            waiter(client, self.directory_id, shared_directory_id, timeout=self.timeout("create"))
        except (WaitError, ClientError) as exc:
            raise self.fail("waiting for", exc, ident) from exc
        return ident

    def delete(self, ctx: Context[Project], ident: str) -> None:
        directory_id, shared_directory_id = parse_share_id(ident)
        client = self.client(ctx)
        try:
            client.unshare_directory(
                DirectoryId=directory_id,
                UnshareTarget={"Id": self.share_target.id, "Type": self.share_target.type},
            )
        except ClientError as exc:
            if error_code_equals(exc, ENTITY_DOES_NOT_EXIST, DIRECTORY_NOT_SHARED):
                return
            raise self.fail("deleting", exc, ident) from exc

        try:
            share_deleted(client, directory_id, shared_directory_id, timeout=self.timeout("delete"))
        except (WaitError, ClientError) as exc:
            raise self.fail("waiting for deletion of", exc, ident) from exc


@spec("directory_share_accepter")
class ShareDirectoryAccepter(Resource):
    """Accept a directory shared with this account."""

    kind = "Directory Service Share Directory Accepter"
    service = SERVICE
    default_timeout = SHARE_OPERATION_TIMEOUT
    force_new = frozenset({"shared_directory_id"})

    shared_directory_id: str

    @property
    def label(self) -> str:
        return self.shared_directory_id

    def find(self, ctx: Context[Project]) -> str | None:
        return self.shared_directory_id if type(self).read(ctx, self.shared_directory_id) else None

    @classmethod
    def read(cls, ctx: Context[Project], ident: str) -> dict[str, Any] | None:
        try:
            directory = directory_by_id(ctx.client(cls.service), ident)
        except NotFoundError:
            return None
        except ClientError as exc:
            if error_code_equals(exc, DIRECTORY_NOT_SHARED):
                return None
            raise cls.fail("reading", exc, ident) from exc

        owner = directory.get("OwnerDirectoryDescription") or {}
        return {
            "shared_directory_id": ident,
            "owner_account_id": owner.get("AccountId"),
            "owner_directory_id": owner.get("DirectoryId"),
            "stage": directory.get("Stage"),
        }

    def create(self, ctx: Context[Project]) -> str:
        client = self.client(ctx)
        try:
            self.retry(
                lambda: client.accept_shared_directory(SharedDirectoryId=self.shared_directory_id),
                retry_codes(DIRECTORY_DOES_NOT_EXIST),
            )
        except ClientError as exc:
            raise self.fail("creating", exc, self.shared_directory_id) from exc

        try:
            directory_created(client, self.shared_directory_id, timeout=self.timeout("create"))
        except FatalStateError as exc:
            raise self.fail("accepting", exc, self.shared_directory_id) from exc
        except (WaitError, ClientError) as exc:
            raise self.fail("waiting for", exc, self.shared_directory_id) from exc
        return self.shared_directory_id

    def delete(self, ctx: Context[Project], ident: str) -> None:
        client = self.client(ctx)
        try:
            client.reject_shared_directory(SharedDirectoryId=ident)
        except ClientError as exc:
            if error_code_equals(exc, ENTITY_DOES_NOT_EXIST):
                return
            raise self.fail("deleting", exc, ident) from exc

        try:
            directory_deleted(client, ident, timeout=self.timeout("delete"))
        except (WaitError, ClientError) as exc:
            raise self.fail("waiting for deletion of", exc, ident) from exc
