# hubregistration

Hub-side reconcilers for registering managed clusters. Resources are held in
an in-memory store, and a set of controllers reconciles them:

- **CSR approval** (`hubregistration.csr.CSRApprovingController`) approves a
  pending certificate signing request when it is a client certificate renewal
  from a spoke cluster agent (checked by `is_spoke_cluster_client_cert_renewal`)
  and a `SubjectAccessReview` created in the store comes back allowed.
- **Lease checking** (`hubregistration.lease.ClusterLeaseController`) looks at
  every accepted cluster. It creates the `managed-cluster-lease` lease (and the
  older `cluster-lease-<cluster>` lease) when missing, and sets the cluster's
  `ManagedClusterConditionAvailable` condition to `Unknown` when neither lease
  was renewed within five times the cluster's lease duration (60 seconds if
  unset).
- **Add-on feature discovery** (`hubregistration.discovery.AddOnFeatureDiscoveryController`)
  keeps `feature.open-cluster-management.io/addon-<name>` labels on clusters,
  valued `available`, `unhealthy` or `unreachable` from each add-on's
  `Available` condition, and removes labels of add-ons that are gone or
  being deleted.
- **Add-on health checks** (`hubregistration.healthcheck.ManagedClusterAddOnHealthCheckController`)
  sets the `Available` condition of every add-on to `Unknown` when its
  cluster's availability is `Unknown`.
- **Cluster sets** (`hubregistration.clusterset.ManagedClusterSetController`)
  counts the clusters labelled `cluster.open-cluster-management.io/clusterset`
  with a set's name and keeps the set's `ClusterSetEmpty` condition up to date.
- **RBAC finalizers** (`hubregistration.rbacfinalizer.FinalizeController`)
  removes the `cluster.open-cluster-management.io/manifest-work-cleanup`
  finalizer from deleting roles and role bindings, but only once no manifest
  works remain when the namespace or the cluster is being deleted.

## Installing

```
pip install .
```

Tests need the `test` extra:

```
pip install ".[test]"
pytest
```

## The store

`hubregistration.store.ResourceStore` keeps objects from
`hubregistration.objects` by kind, namespace and name.

- `add`, `get` and `list` are cache reads and writes; they are not recorded.
  `list` takes an optional namespace and a label selector given as a dict.
- `create`, `update`, `update_status` and `delete` are client calls; each is
  appended to `store.actions` as an `Action` (verb, kind, name, namespace,
  object, subresource).
- `prepend_reactor(verb, kind, reaction)` lets a function answer a client call
  in place of the store; returning `None` passes the call on.

A missing object raises `hubregistration.objects.NotFoundError`.

## Reconciling one key

Every controller has a `sync` method taking a
`hubregistration.controller.SyncContext` with the queue key to reconcile:

```python
from hubregistration.clusterset import CLUSTER_SET_LABEL, ManagedClusterSetController
from hubregistration.controller import SyncContext
from hubregistration.objects import ManagedCluster, ManagedClusterSet, ObjectMeta
from hubregistration.store import ResourceStore

store = ResourceStore(
    ManagedClusterSet(metadata=ObjectMeta(name="set1")),
    ManagedCluster(metadata=ObjectMeta(name="cluster1", labels={CLUSTER_SET_LABEL: "set1"})),
)
reconciler = ManagedClusterSetController(store)
reconciler.sync(SyncContext("set1"))

print(store.actions[-1].verb, store.actions[-1].subresource)  # update status
print(reconciler.cluster_sets_map)                             # {'cluster1': 'set1'}
```

Errors from several objects in one pass are raised together as a
`hubregistration.controller.AggregateError`.

## Running the controllers

`hubregistration.manager.new_hub_controllers(store, recorder)` builds a
`hubregistration.controller.Controller` for each reconciler above.
`run_controller_manager(store, stop_event, recorder)` runs them, one worker
each, until the `threading.Event` is set:

```python
import threading

from hubregistration.controller import EventRecorder
from hubregistration.manager import run_controller_manager
from hubregistration.objects import ManagedCluster, ObjectMeta
from hubregistration.store import ResourceStore

store = ResourceStore()
store.add(ManagedCluster(metadata=ObjectMeta(name="cluster1")))

recorder = EventRecorder()
stop = threading.Event()
worker = threading.Thread(target=run_controller_manager, args=(store, stop, recorder))
worker.start()
# ...
stop.set()
worker.join()
print(recorder.events)  # (reason, message) pairs the controllers emitted
```

Stored objects are handed to the controllers that watch them when the manager
starts and again every 600 seconds; the lease controller also resyncs every
300 seconds and add-on discovery every 600 seconds. A key whose sync fails is
queued again after a growing delay. A single `Controller` can be driven by
hand with `enqueue(obj)` and `process_next(timeout)`.

## What it does not do

- It does not talk to a cluster API server. All objects live in the
  in-process `ResourceStore`, which is not persisted and does not notify
  controllers of changes; they see changes only when keys are queued.
- There is no command-line program; the controllers are used from Python.
- It does not accept or deny managed clusters, add cluster finalizers, apply
  namespaces, roles or role bindings for accepted clusters, or maintain the
  registration and work cluster roles.