"""Availability of accepted managed clusters judged by how recently their leases were renewed."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from .controller import Controller, EventRecorder, SyncContext
from .objects import (
    MANAGED_CLUSTER_CONDITION_AVAILABLE,
    MANAGED_CLUSTER_CONDITION_HUB_ACCEPTED,
    Condition,
    ConditionStatus,
    Lease,
    ManagedCluster,
    NotFoundError,
    ObjectMeta,
    is_status_condition_true,
)
from .store import ResourceStore, update_managed_cluster_condition

log = logging.getLogger(__name__)

LEASE_NAME = "managed-cluster-lease"
LEASE_DURATION_TIMES = 5
DEFAULT_LEASE_DURATION_SECONDS = 60
DEFAULT_RESYNC_INTERVAL = 300.0
CLUSTER_NAME_LABEL = "open-cluster-management.io/cluster-name"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_fresh(lease: Lease, grace_period: timedelta) -> bool:
    if lease.renew_time is None:
        return False
    return _now() < lease.renew_time + grace_period


class ClusterLeaseController:
    """Marks accepted clusters Unknown once their agent stops renewing its lease."""

    def __init__(
        self,
        cluster_store: ResourceStore,
        lease_store: ResourceStore | None = None,
        resync_interval: float = DEFAULT_RESYNC_INTERVAL,
        recorder: EventRecorder | None = None,
    ) -> None:
        self.cluster_store = cluster_store
        self.lease_store = lease_store if lease_store is not None else cluster_store
        self.resync_interval = resync_interval
        self.recorder = recorder or EventRecorder("managed-cluster-lease-controller")

    def _create_lease(self, cluster_name: str, lease_name: str) -> None:
        lease = Lease(
            metadata=ObjectMeta(
                name=lease_name,
                namespace=cluster_name,
                labels={CLUSTER_NAME_LABEL: cluster_name},
            ),
            holder_identity=lease_name,
            renew_time=_now(),
        )
        self.lease_store.create(lease)

    def sync(self, sync_ctx: SyncContext) -> None:
        """Check the lease of every accepted cluster."""
        for cluster in self.cluster_store.list(ManagedCluster):
            if not is_status_condition_true(cluster.conditions, MANAGED_CLUSTER_CONDITION_HUB_ACCEPTED):
                continue

            try:
                observed = self.lease_store.get(Lease, LEASE_NAME, cluster.name)
            except NotFoundError:
                self._create_lease(cluster.name, LEASE_NAME)
                continue

            duration = cluster.lease_duration_seconds or DEFAULT_LEASE_DURATION_SECONDS
            grace_period = timedelta(seconds=LEASE_DURATION_TIMES * duration)
            if _is_fresh(observed, grace_period):
                continue

            # Agents of earlier releases renew a lease named after their cluster.
            old_lease_name = f"cluster-lease-{cluster.name}"
            try:
                old_lease = self.lease_store.get(Lease, old_lease_name, cluster.name)
            except NotFoundError:
                self._create_lease(cluster.name, old_lease_name)
                continue
            if _is_fresh(old_lease, grace_period):
                continue

            _, updated = update_managed_cluster_condition(
                self.cluster_store,
                cluster.name,
                Condition(
                    type=MANAGED_CLUSTER_CONDITION_AVAILABLE,
                    status=ConditionStatus.UNKNOWN,
                    reason="ManagedClusterLeaseUpdateStopped",
                    message="Registration agent stopped updating its lease.",
                ),
            )
            if updated:
                sync_ctx.recorder.event(
                    "ManagedClusterAvailableConditionUpdated",
                    f'update managed cluster "{cluster.name}" available condition to unknown, '
                    "due to its lease is not updated constantly",
                )

    def controller(self) -> Controller:
        return Controller(
            "ManagedClusterLeaseController",
            self.sync,
            recorder=self.recorder,
            resync_interval=self.resync_interval,
        )