"""Status of managed cluster sets, derived from the clusters labelled as their members."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterable
from typing import Any

from .controller import Controller, EventRecorder, SyncContext
from .objects import (
    MANAGED_CLUSTER_SET_CONDITION_EMPTY,
    Condition,
    ConditionStatus,
    ManagedCluster,
    ManagedClusterSet,
    NotFoundError,
    set_status_condition,
)
from .store import ResourceStore

log = logging.getLogger(__name__)

CLUSTER_SET_LABEL = "cluster.open-cluster-management.io/clusterset"


class ManagedClusterSetController:
    """Keeps the Empty condition of each cluster set current."""

    def __init__(self, store: ResourceStore, recorder: EventRecorder | None = None) -> None:
        self.store = store
        self.recorder = recorder or EventRecorder("managed-cluster-set-controller")
        # Which set each cluster was last seen in, so a relabelled cluster
        # also requeues the set it left.
        self.cluster_sets_map: dict[str, str] = {}
        self._map_lock = threading.RLock()

    def original_cluster_set_queue_key(self, obj: Any) -> str:
        """Return the set a cluster belonged to, if it has since moved; otherwise ""."""
        if isinstance(obj, ManagedClusterSet):
            return obj.name
        with self._map_lock:
            original = self.cluster_sets_map.get(obj.metadata.name, "")
        current = obj.metadata.labels.get(CLUSTER_SET_LABEL, "")
        return original if original != current else ""

    def current_cluster_set_queue_key(self, obj: Any) -> str:
        """Return the set a cluster currently belongs to, or ""."""
        if isinstance(obj, ManagedClusterSet):
            return obj.name
        return obj.metadata.labels.get(CLUSTER_SET_LABEL, "")

    def sync(self, sync_ctx: SyncContext) -> None:
        cluster_set_name = sync_ctx.queue_key
        if not cluster_set_name:
            return
        log.info("Reconciling ManagedClusterSet %s", cluster_set_name)
        try:
            cluster_set = self.store.get(ManagedClusterSet, cluster_set_name)
        except NotFoundError:
            return
        if cluster_set.metadata.is_deleting():
            return
        try:
            self.sync_cluster_set(cluster_set)
        except Exception as err:
            raise RuntimeError(f'failed to sync ManagedClusterSet "{cluster_set_name}": {err}') from err

    def sync_cluster_set(self, cluster_set: ManagedClusterSet) -> None:
        """Count the members of a set and write its Empty condition if it changed."""
        updated = copy.deepcopy(cluster_set)
        clusters = self.store.list(ManagedCluster, selector={CLUSTER_SET_LABEL: updated.name})
        self.update_cluster_sets_map(updated.name, clusters)

        count = len(clusters)
        if count == 0:
            condition = Condition(
                type=MANAGED_CLUSTER_SET_CONDITION_EMPTY,
                status=ConditionStatus.TRUE,
                reason="NoClusterMatched",
                message="No ManagedCluster selected",
            )
        else:
            condition = Condition(
                type=MANAGED_CLUSTER_SET_CONDITION_EMPTY,
                status=ConditionStatus.FALSE,
                reason="ClustersSelected",
                message=f"{count} ManagedClusters selected",
            )
        set_status_condition(updated.conditions, condition)

        if updated.conditions == cluster_set.conditions:
            return
        try:
            self.store.update_status(updated)
        except Exception as err:
            raise RuntimeError(
                f'failed to update status of ManagedClusterSet "{updated.name}": {err}'
            ) from err

    def update_cluster_sets_map(self, cluster_set_name: str, clusters: Iterable[ManagedCluster]) -> None:
        """Record the given clusters as the only members of a set."""
        new_members = {cluster.name for cluster in clusters}
        with self._map_lock:
            original_members = {
                cluster for cluster, member_of in self.cluster_sets_map.items()
                if member_of == cluster_set_name
            }
            for cluster in new_members - original_members:
                self.cluster_sets_map[cluster] = cluster_set_name
            for cluster in original_members - new_members:
                del self.cluster_sets_map[cluster]

    def controller(self) -> Controller:
        return Controller(
            "ManagedClusterSetController",
            self.sync,
            recorder=self.recorder,
            # The set a cluster left must be computed before the map is refreshed.
            queue_key_funcs=[self.original_cluster_set_queue_key, self.current_cluster_set_queue_key],
        )