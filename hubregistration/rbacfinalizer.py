"""Holds back deletion of work-agent roles and role bindings until a cluster's manifest works are gone."""

from __future__ import annotations

import copy
import logging
from typing import Any

from .controller import (
    Controller,
    EventRecorder,
    SyncContext,
    meta_namespace_key,
    split_meta_namespace_key,
)
from .objects import (
    ManagedCluster,
    ManifestWork,
    Namespace,
    NotFoundError,
    Role,
    RoleBinding,
)
from .store import ResourceStore

log = logging.getLogger(__name__)

MANIFEST_WORK_FINALIZER = "cluster.open-cluster-management.io/manifest-work-cleanup"


def has_finalizer(obj: Any, finalizer: str) -> bool:
    """Whether the object exists and carries the given finalizer."""
    if obj is None:
        return False
    return finalizer in obj.metadata.finalizers


def remove_finalizer(obj: Any, finalizer: str) -> bool:
    """Remove a finalizer from the object in place; return whether it was there."""
    if obj is None:
        return False
    remaining = [f for f in obj.metadata.finalizers if f != finalizer]
    if len(remaining) == len(obj.metadata.finalizers):
        return False
    obj.metadata.finalizers = remaining
    return True


def pending_finalization(obj: Any) -> bool:
    """Whether the object exists and has a deletion timestamp."""
    return obj is not None and obj.metadata.is_deleting()


class FinalizeController:
    """Removes the manifest-work finalizer from roles and role bindings once it is safe.

    ``store`` serves cached reads of roles, role bindings, namespaces and
    clusters; ``work_store`` serves manifest works and ``rbac_client`` takes
    the role and role binding updates. Both default to ``store``.
    """

    def __init__(
        self,
        store: ResourceStore,
        rbac_client: ResourceStore | None = None,
        work_store: ResourceStore | None = None,
        recorder: EventRecorder | None = None,
    ) -> None:
        self.store = store
        self.rbac_client = rbac_client if rbac_client is not None else store
        self.work_store = work_store if work_store is not None else store
        self.recorder = recorder or EventRecorder("finalize-controller")

    def _get_optional(self, kind: type, name: str, namespace: str = "") -> Any:
        try:
            return self.store.get(kind, name, namespace)
        except NotFoundError:
            return None

    def sync(self, sync_ctx: SyncContext) -> None:
        key = sync_ctx.queue_key
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError:
            # keys not in the form namespace/name are ignored
            return

        cluster = self._get_optional(ManagedCluster, namespace)
        ns = self.store.get(Namespace, namespace)
        role = self._get_optional(Role, name, namespace)
        role_binding = self._get_optional(RoleBinding, name, namespace)

        try:
            self.sync_role_and_role_binding(sync_ctx, role, role_binding, ns, cluster)
        except Exception as err:
            log.error("Reconcile role/rolebinding %s fails with err: %s", key, err)
            raise

    def sync_role_and_role_binding(
        self,
        sync_ctx: SyncContext,
        role: Role | None,
        role_binding: RoleBinding | None,
        namespace: Namespace,
        cluster: ManagedCluster | None,
    ) -> None:
        """Drop the finalizer from a deleting role and role binding when no works remain."""
        if not has_finalizer(role, MANIFEST_WORK_FINALIZER) and not has_finalizer(
            role_binding, MANIFEST_WORK_FINALIZER
        ):
            return

        # Works must be gone first when the namespace is terminating, or when the
        # cluster is being deleted but its namespace could not be.
        cluster_deleting = cluster is not None and cluster.metadata.is_deleting()
        if namespace.metadata.is_deleting() or cluster_deleting:
            works = self.work_store.list(ManifestWork, namespace.name)
            if works:
                raise RuntimeError(
                    f"Still having {len(works)} works in the cluster namespace {namespace.name}"
                )

        for obj in (role, role_binding):
            if pending_finalization(obj):
                self._remove_finalizer_from(obj)

    def _remove_finalizer_from(self, obj: Any) -> None:
        obj = copy.deepcopy(obj)
        if remove_finalizer(obj, MANIFEST_WORK_FINALIZER):
            self.rbac_client.update(obj)

    def controller(self) -> Controller:
        return Controller(
            "FinalizeController",
            self.sync,
            recorder=self.recorder,
            queue_key_funcs=[meta_namespace_key],
        )