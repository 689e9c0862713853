"""Marks add-ons Unknown when their managed cluster stops reporting."""

from __future__ import annotations

from .controller import Controller, EventRecorder, SyncContext, aggregate
from .objects import (
    MANAGED_CLUSTER_CONDITION_AVAILABLE,
    Condition,
    ConditionStatus,
    ManagedCluster,
    ManagedClusterAddOn,
    NotFoundError,
    find_status_condition,
)
from .store import ResourceStore, update_addon_condition

ADDON_AVAILABLE_CONDITION_TYPE = "Available"


class ManagedClusterAddOnHealthCheckController:
    """Copies an Unknown cluster availability onto every add-on of that cluster."""

    def __init__(
        self,
        cluster_store: ResourceStore,
        addon_store: ResourceStore | None = None,
        recorder: EventRecorder | None = None,
    ) -> None:
        self.cluster_store = cluster_store
        self.addon_store = addon_store if addon_store is not None else cluster_store
        self.recorder = recorder or EventRecorder("addon-healthcheck-controller")

    def sync(self, sync_ctx: SyncContext) -> None:
        cluster_name = sync_ctx.queue_key
        try:
            cluster = self.cluster_store.get(ManagedCluster, cluster_name)
        except NotFoundError:
            return

        available = find_status_condition(cluster.conditions, MANAGED_CLUSTER_CONDITION_AVAILABLE)
        # Only an Unknown cluster means the agent that reports add-on status has stopped.
        if available is None or available.status != ConditionStatus.UNKNOWN:
            return

        errors: list[Exception] = []
        for addon in self.addon_store.list(ManagedClusterAddOn, cluster_name):
            condition = Condition(
                type=ADDON_AVAILABLE_CONDITION_TYPE,
                status=available.status,
                reason=available.reason,
                message=available.message,
            )
            try:
                _, updated = update_addon_condition(
                    self.addon_store, addon.namespace, addon.name, condition
                )
            except Exception as err:  # collected and reported together
                errors.append(err)
                continue
            if updated:
                sync_ctx.recorder.event(
                    "ManagedClusterAddOnStatusUpdated",
                    f'update addon "{addon.name}" status to unknown on managed cluster "{cluster_name}"',
                )

        error = aggregate(errors)
        if error is not None:
            raise error

    def controller(self) -> Controller:
        return Controller(
            "ManagedClusterAddonHealthCheckController",
            self.sync,
            recorder=self.recorder,
            queue_key_funcs=[lambda obj: obj.metadata.name],
        )