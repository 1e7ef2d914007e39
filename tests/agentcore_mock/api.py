"""In-memory control plane implementing RemoteResourceAPI.

Resources are kept per type and keyed by id. Creates return a transitional
status; the next lookup settles the resource into its type's ready status
unless a status script says otherwise.
"""

from __future__ import annotations

import itertools
import threading
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from orchestrator.errors import ResourceNotFound
from orchestrator.remote import ListPage, ResourceDescriptor, ResourceRecord, type_name

# Status a resource settles into after creation
SETTLED_STATUS = {
    "memory": "ACTIVE",
    "oauth2_credential_provider": "AVAILABLE",
    "workload_identity": "AVAILABLE",
    "gateway": "READY",
    "gateway_target": "READY",
    "agent_runtime": "READY",
    "runtime_endpoint": "READY",
    "tool_stack": "CREATE_COMPLETE",
    "ecr_repository": "AVAILABLE",
    "ecr_image": "AVAILABLE",
    "iam_role": "AVAILABLE",
    "iam_role_policy": "AVAILABLE",
}

# Types whose create call completes synchronously
SYNCHRONOUS_TYPES = frozenset(
    {
        "oauth2_credential_provider",
        "workload_identity",
        "ecr_repository",
        "iam_role",
        "iam_role_policy",
    }
)

# Types whose create call replaces a resource of the same name
REPLACED_ON_CREATE = frozenset({"iam_role_policy"})


@dataclass
class InjectedError:
    """An error raised by the next `remaining` matching calls (None = always)."""

    error: Exception
    remaining: int | None = 1


class FakeResourceAPI:
    """Scriptable fake of the remote resource API.

    Usage:
        api = FakeResourceAPI()
        api.add("memory", "bac_agent_memory", status="ACTIVE")
        api.script_statuses("gateway", "bac-gtw", ["CREATING", "READY"])
        api.inject("delete", "gateway", "gw-1", DependencyInUse("busy"), times=2)
        api.paginate_forever("workload_identity")
    """

    def __init__(self, page_size: int = 20, account_id: str = "123456789012") -> None:
        self.page_size = page_size
        self.account_id = account_id
        self.calls: Counter[str] = Counter()
        self.created: list[ResourceDescriptor] = []
        self.deleted: list[tuple[str, str]] = []
        self.updated: list[tuple[str, str, dict[str, Any]]] = []
        self.create_attributes: dict[str, dict[str, Any]] = {}
        self._resources: dict[str, dict[str, ResourceRecord]] = {}
        self._scripts: dict[tuple[str, str], list[str]] = {}
        self._errors: dict[tuple[str, str, str], InjectedError] = {}
        self._endless: set[str] = set()
        self._sticky: set[tuple[str, str]] = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # =========================================================================
    # Test setup
    # =========================================================================

    def add(
        self,
        type: str,
        name: str,
        status: str | None = None,
        id: str | None = None,
        parent: str | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> ResourceRecord:
        """Place an existing resource in the fake account."""
        key = type_name(type)
        record_id = id or f"{key}-{next(self._ids)}"
        record = ResourceRecord(
            id=record_id,
            type=key,
            name=name,
            status=status if status is not None else SETTLED_STATUS.get(key, "AVAILABLE"),
            attributes={"arn": f"arn:fake:{key}/{record_id}", **(attributes or {})},
            parent=parent,
        )
        self._resources.setdefault(key, {})[record_id] = record
        return record

    def add_many(
        self, type: str, count: int, prefix: str = "item", parent: str | None = None
    ) -> list[ResourceRecord]:
        return [
            self.add(type, f"{prefix}-{i:04d}", parent=parent) for i in range(count)
        ]

    def script_statuses(self, type: str, name: str, statuses: list[str]) -> None:
        """Statuses returned by successive lookups; the last one repeats."""
        self._scripts[(type_name(type), name)] = list(statuses)

    def inject(
        self, operation: str, type: str, key: str, error: Exception, times: int | None = 1
    ) -> None:
        """Fail `operation` ("get", "create", "delete", "update", "list") for `key`.

        `key` is the resource id for delete/update, the name for get/create,
        and the cursor (or "" for the first page) for list.
        """
        self._errors[(operation, type_name(type), key)] = InjectedError(error, times)

    def paginate_forever(self, type: str) -> None:
        """Listing returns a fresh item and a continuation token on every page."""
        self._endless.add(type_name(type))

    def keep_after_delete(self, type: str, id: str) -> None:
        """Accept deletes of `id` but leave the resource in DELETING status."""
        self._sticky.add((type_name(type), id))

    def records(self, type: str) -> list[ResourceRecord]:
        return list(self._resources.get(type_name(type), {}).values())

    def names(self, type: str) -> list[str]:
        return [r.name for r in self.records(type)]

    def count(self, type: str) -> int:
        return len(self._resources.get(type_name(type), {}))

    # =========================================================================
    # RemoteResourceAPI
    # =========================================================================

    def list_resources(
        self, type: str, cursor: str | None = None, parent: str | None = None
    ) -> ListPage:
        key = type_name(type)
        with self._lock:
            self.calls[f"list:{key}"] += 1
            self._raise_injected("list", key, cursor or "")

            if key in self._endless:
                page = int(cursor or 0) + 1
                item = ResourceRecord(id=f"{key}-endless-{page}", type=key, name=f"endless-{page}")
                return ListPage(items=[item], next_token=str(page))

            items = [r for r in self._resources.get(key, {}).values() if r.parent == parent]
            start = int(cursor or 0)
            end = start + self.page_size
            next_token = str(end) if end < len(items) else None
            return ListPage(items=list(items[start:end]), next_token=next_token)

    def get_resource(
        self, type: str, name: str, parent: str | None = None
    ) -> ResourceRecord | None:
        key = type_name(type)
        with self._lock:
            self.calls[f"get:{key}"] += 1
            self._raise_injected("get", key, name)

            record = self._find(key, name, parent)
            if record is None:
                return None
            script = self._scripts.get((key, name))
            if script:
                record.status = script.pop(0) if len(script) > 1 else script[0]
            elif record.status == "CREATING":
                record.status = SETTLED_STATUS.get(key, "AVAILABLE")
            return record

    def create_resource(self, type: str, descriptor: ResourceDescriptor) -> ResourceRecord:
        key = type_name(type)
        with self._lock:
            self.calls[f"create:{key}"] += 1
            self._raise_injected("create", key, descriptor.name)
            self.created.append(descriptor)
            if key in REPLACED_ON_CREATE:
                existing = self._find(key, descriptor.name, descriptor.parent)
                if existing is not None:
                    del self._resources[key][existing.id]

        status = SETTLED_STATUS.get(key, "AVAILABLE") if key in SYNCHRONOUS_TYPES else "CREATING"
        attributes = dict(self.create_attributes.get(key, {}))
        if key == "gateway":
            attributes.setdefault("url", f"https://{descriptor.name}.gateway.fake/mcp")
        record = self.add(
            key, descriptor.name, status, parent=descriptor.parent, attributes=attributes
        )
        if key == "agent_runtime":
            # The service creates the default endpoint alongside the runtime
            self.add("runtime_endpoint", "DEFAULT", status="READY", parent=record.id)
        return record

    def delete_resource(self, type: str, id: str, parent: str | None = None) -> None:
        key = type_name(type)
        with self._lock:
            self.calls[f"delete:{key}"] += 1
            self._raise_injected("delete", key, id)

            resources = self._resources.get(key, {})
            if id not in resources:
                raise ResourceNotFound(f"{key} {id} not found", code="ResourceNotFoundException")
            self.deleted.append((key, id))
            if (key, id) in self._sticky:
                resources[id].status = "DELETING"
                return
            removed = resources.pop(id)
            # Children go with their parent
            for children in self._resources.values():
                for child_id in [c for c, r in children.items() if r.parent == removed.id]:
                    del children[child_id]

    def update_resource(
        self, type: str, id: str, attributes: Mapping[str, Any]
    ) -> ResourceRecord:
        key = type_name(type)
        with self._lock:
            self.calls[f"update:{key}"] += 1
            self._raise_injected("update", key, id)

            record = self._resources.get(key, {}).get(id)
            if record is None:
                raise ResourceNotFound(f"{key} {id} not found", code="ResourceNotFoundException")
            self.updated.append((key, id, dict(attributes)))
            return record

    def caller_account(self) -> str:
        with self._lock:
            self.calls["caller_account"] += 1
            return self.account_id

    # =========================================================================
    # Internals
    # =========================================================================

    def _find(self, key: str, name: str, parent: str | None) -> ResourceRecord | None:
        for record in self._resources.get(key, {}).values():
            if record.name == name and (parent is None or record.parent == parent):
                return record
        return None

    def _raise_injected(self, operation: str, key: str, target: str) -> None:
        injected = self._errors.get((operation, key, target))
        if injected is None:
            return
        if injected.remaining is not None:
            injected.remaining -= 1
            if injected.remaining <= 0:
                del self._errors[(operation, key, target)]
        raise injected.error
