"""Builds the hub controllers and runs them together until told to stop."""

from __future__ import annotations

import threading

from .clusterset import ManagedClusterSetController
from .controller import Controller, EventRecorder
from .csr import CSRApprovingController
from .discovery import AddOnFeatureDiscoveryController
from .healthcheck import ManagedClusterAddOnHealthCheckController
from .lease import ClusterLeaseController
from .objects import (
    CertificateSigningRequest,
    Lease,
    ManagedCluster,
    ManagedClusterAddOn,
    ManagedClusterSet,
    Role,
    RoleBinding,
)
from .rbacfinalizer import FinalizeController
from .store import ResourceStore

LEASE_RESYNC_INTERVAL = 300.0
INFORMER_RESYNC_INTERVAL = 600.0

# The kinds each controller is told about when objects are listed.
_WATCHED_KINDS: dict[str, tuple[type, ...]] = {
    "CSRApprovingController": (CertificateSigningRequest,),
    "ManagedClusterLeaseController": (ManagedCluster, Lease),
    "FinalizeController": (Role, RoleBinding),
    "ManagedClusterSetController": (ManagedClusterSet, ManagedCluster),
    "ManagedClusterAddonHealthCheckController": (ManagedCluster,),
    "AddOnFeatureDiscoveryController": (ManagedCluster, ManagedClusterAddOn),
}


def new_hub_controllers(store: ResourceStore, recorder: EventRecorder | None = None) -> list[Controller]:
    """Create the hub controllers that manage spoke cluster registration."""
    recorder = recorder or EventRecorder("hub")
    return [
        CSRApprovingController(store, recorder=recorder).controller(),
        ClusterLeaseController(
            store, resync_interval=LEASE_RESYNC_INTERVAL, recorder=recorder
        ).controller(),
        FinalizeController(store, recorder=recorder).controller(),
        ManagedClusterSetController(store, recorder=recorder).controller(),
        ManagedClusterAddOnHealthCheckController(store, recorder=recorder).controller(),
        AddOnFeatureDiscoveryController(store, recorder=recorder).controller(),
    ]


def _feed(
    store: ResourceStore,
    controllers: list[Controller],
    stop_event: threading.Event,
    interval: float,
) -> None:
    while not stop_event.is_set():
        for controller in controllers:
            for kind in _WATCHED_KINDS.get(controller.name, ()):
                for obj in store.list(kind):
                    controller.enqueue(obj)
        stop_event.wait(interval)


def run_controller_manager(
    store: ResourceStore,
    stop_event: threading.Event,
    recorder: EventRecorder | None = None,
) -> None:
    """Run every hub controller with one worker each until stop_event is set.

    Stored objects are handed to the controllers that watch them at start and
    again on every informer resync period.
    """
    controllers = new_hub_controllers(store, recorder)
    threads = [
        threading.Thread(target=_feed, args=(store, controllers, stop_event, INFORMER_RESYNC_INTERVAL),
                         daemon=True)
    ]
    threads.extend(
        threading.Thread(target=controller.run, args=(stop_event, 1), daemon=True)
        for controller in controllers
    )
    for thread in threads:
        thread.start()
    stop_event.wait()
    for thread in threads:
        thread.join()