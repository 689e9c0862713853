"""Labels on managed clusters that mirror the state of their add-ons."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from .controller import (
    DEFAULT_QUEUE_KEY,
    Controller,
    EventRecorder,
    SyncContext,
    meta_namespace_key,
    split_meta_namespace_key,
)
from .objects import (
    MANAGED_CLUSTER_ADDON_CONDITION_AVAILABLE,
    ConditionStatus,
    ManagedCluster,
    ManagedClusterAddOn,
    NotFoundError,
    find_status_condition,
)
from .store import ResourceStore

log = logging.getLogger(__name__)

ADDON_FEATURE_PREFIX = "feature.open-cluster-management.io/addon-"
ADDON_STATUS_AVAILABLE = "available"
ADDON_STATUS_UNHEALTHY = "unhealthy"
ADDON_STATUS_UNREACHABLE = "unreachable"

RESYNC_INTERVAL = 600.0


def get_addon_label_value(addon: ManagedClusterAddOn) -> str:
    """Map an add-on's Available condition to the value of its feature label."""
    condition = find_status_condition(addon.conditions, MANAGED_CLUSTER_ADDON_CONDITION_AVAILABLE)
    if condition is None:
        return ADDON_STATUS_UNREACHABLE
    if condition.status == ConditionStatus.TRUE:
        return ADDON_STATUS_AVAILABLE
    if condition.status == ConditionStatus.FALSE:
        return ADDON_STATUS_UNHEALTHY
    return ADDON_STATUS_UNREACHABLE


def merge_labels(existing: Mapping[str, str], required: Mapping[str, str]) -> tuple[dict[str, str], bool]:
    """Merge required labels into existing ones; return the result and whether it changed.

    A required key ending in "-" asks for the key without that suffix to be removed.
    """
    merged = dict(existing)
    modified = False
    for key, value in required.items():
        if key.endswith("-"):
            actual_key = key.rstrip("-")
            if actual_key in merged:
                del merged[actual_key]
                modified = True
        elif merged.get(key) != value or key not in merged:
            merged[key] = value
            modified = True
    return merged, modified


class AddOnFeatureDiscoveryController:
    """Keeps add-on feature labels of managed clusters in step with their add-ons."""

    def __init__(
        self,
        cluster_store: ResourceStore,
        addon_store: ResourceStore | None = None,
        recorder: EventRecorder | None = None,
    ) -> None:
        self.cluster_store = cluster_store
        self.addon_store = addon_store if addon_store is not None else cluster_store
        self.recorder = recorder or EventRecorder("addon-feature-discovery-controller")

    def sync(self, sync_ctx: SyncContext) -> None:
        queue_key = sync_ctx.queue_key
        try:
            namespace, name = split_meta_namespace_key(queue_key)
        except ValueError as err:
            log.error("%s", err)
            return

        if queue_key == DEFAULT_QUEUE_KEY:
            for cluster in self.cluster_store.list(ManagedCluster):
                sync_ctx.queue.add(cluster.name)
        elif namespace:
            self.sync_addon(namespace, name)
        else:
            self.sync_cluster(name)

    def _update_labels(self, cluster: ManagedCluster, required: Mapping[str, str]) -> None:
        merged, modified = merge_labels(cluster.metadata.labels, required)
        if not modified:
            return
        cluster.metadata.labels = merged
        self.cluster_store.update(cluster)

    def sync_addon(self, cluster_name: str, addon_name: str) -> None:
        """Set or remove the label of one add-on on its cluster."""
        log.debug('Reconciling addOn "%s"', addon_name)
        try:
            addon = self.addon_store.get(ManagedClusterAddOn, addon_name, cluster_name)
        except NotFoundError:
            required = {f"{ADDON_FEATURE_PREFIX}{addon_name}-": ""}
        else:
            if addon.metadata.is_deleting():
                required = {f"{ADDON_FEATURE_PREFIX}{addon_name}-": ""}
            else:
                required = {f"{ADDON_FEATURE_PREFIX}{addon.name}": get_addon_label_value(addon)}

        try:
            cluster = self.cluster_store.get(ManagedCluster, cluster_name)
        except NotFoundError as err:
            raise LookupError(f'unable to find cluster with name "{cluster_name}": {err}') from err
        if cluster.metadata.is_deleting():
            return
        self._update_labels(cluster, required)

    def sync_cluster(self, cluster_name: str) -> None:
        """Rebuild all add-on labels of one cluster."""
        try:
            cluster = self.cluster_store.get(ManagedCluster, cluster_name)
        except NotFoundError:
            return
        if cluster.metadata.is_deleting():
            return

        required = {
            f"{ADDON_FEATURE_PREFIX}{addon.name}": get_addon_label_value(addon)
            for addon in self.addon_store.list(ManagedClusterAddOn, cluster_name)
            if not addon.metadata.is_deleting()
        }
        stale = [
            key
            for key in cluster.metadata.labels
            if key.startswith(ADDON_FEATURE_PREFIX) and key not in required
        ]
        for key in stale:
            required[f"{key}-"] = ""
        self._update_labels(cluster, required)

    def controller(self) -> Controller:
        return Controller(
            "AddOnFeatureDiscoveryController",
            self.sync,
            recorder=self.recorder,
            queue_key_funcs=[meta_namespace_key],
            resync_interval=RESYNC_INTERVAL,
        )