"""Collaborators shared by every lifecycle phase."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from .bulk_delete import BulkDeletionEngine, DeleteOperation, ListOperation
from .config import Config
from .config_store import ConfigStore
from .models import BaseSettings, GeneratedState
from .provisioning import DEFAULT_FAILED_STATUSES, PollPolicy, ResourceProvisioner
from .remote import ListPage, RemoteResourceAPI
from .retry import RetryPolicy, Sleeper


@dataclass
class OrchestratorContext:
    """Explicit wiring of config, store and remote API for one invocation."""

    config: Config
    store: ConfigStore
    api: RemoteResourceAPI
    sleep: Sleeper = asyncio.sleep
    echo: Callable[[str], None] = print
    provisioner: ResourceProvisioner = field(init=False)
    engine: BulkDeletionEngine = field(init=False)

    def __post_init__(self) -> None:
        self.provisioner = ResourceProvisioner(self.api, sleep=self.sleep, progress=self.echo)
        self.engine = BulkDeletionEngine.from_config(
            self.config, sleep=self.sleep, progress=self.echo
        )

    @cached_property
    def base(self) -> BaseSettings:
        return self.store.load_base()

    def generated(self) -> GeneratedState:
        # Re-read every time; earlier phases may have written it
        return self.store.load_generated()

    def poll_policy(
        self,
        ready: set[str] | frozenset[str],
        failed: set[str] | frozenset[str] = DEFAULT_FAILED_STATUSES,
    ) -> PollPolicy:
        return PollPolicy.from_config(self.config, ready=ready, failed=failed)

    @property
    def pass_retry(self) -> RetryPolicy:
        return RetryPolicy.fixed(
            self.config.pass_retry_attempts, self.config.pass_retry_backoff_seconds
        )

    def list_operation(
        self,
        type: str,
        parent: str | None = None,
        keep: Callable[[Any], bool] | None = None,
    ) -> ListOperation:
        """Bind a listing call to a type, optionally filtering each page."""

        def list_page(cursor: str | None) -> ListPage:
            page = self.api.list_resources(type, cursor, parent)
            if keep is None:
                return page
            return ListPage(items=[i for i in page.items if keep(i)], next_token=page.next_token)

        return list_page

    def delete_operation(self, type: str) -> DeleteOperation:
        def delete(item: Any) -> None:
            self.api.delete_resource(type, item.id, item.parent)

        return delete
