from datetime import datetime, timezone

import pytest

from hubregistration.controller import DEFAULT_QUEUE_KEY, SyncContext
from hubregistration.discovery import (
    ADDON_FEATURE_PREFIX,
    ADDON_STATUS_AVAILABLE,
    ADDON_STATUS_UNHEALTHY,
    ADDON_STATUS_UNREACHABLE,
    AddOnFeatureDiscoveryController,
    get_addon_label_value,
    merge_labels,
)
from hubregistration.objects import (
    MANAGED_CLUSTER_ADDON_CONDITION_AVAILABLE,
    Condition,
    ConditionStatus,
    ManagedCluster,
    ManagedClusterAddOn,
    ObjectMeta,
)
from hubregistration.store import ResourceStore

CLUSTER_NAME = "cluster1"
DELETE_TIME = datetime.now(timezone.utc)


def _cluster(labels=None, deleting=False):
    return ManagedCluster(
        metadata=ObjectMeta(
            name=CLUSTER_NAME,
            labels=dict(labels or {}),
            deletion_timestamp=DELETE_TIME if deleting else None,
        )
    )


def _addon(name, namespace=CLUSTER_NAME, deleting=False, status=None):
    conditions = []
    if status is not None:
        conditions.append(Condition(type=MANAGED_CLUSTER_ADDON_CONDITION_AVAILABLE, status=status))
    return ManagedClusterAddOn(
        metadata=ObjectMeta(
            name=name,
            namespace=namespace,
            deletion_timestamp=DELETE_TIME if deleting else None,
        ),
        conditions=conditions,
    )


def _controller(cluster=None, addons=()):
    cluster_store = ResourceStore(*([cluster] if cluster is not None else []))
    addon_store = ResourceStore(*addons)
    return AddOnFeatureDiscoveryController(cluster_store, addon_store), cluster_store


def _label(name):
    return f"{ADDON_FEATURE_PREFIX}{name}"


@pytest.mark.parametrize(
    "status, expected",
    [
        (None, ADDON_STATUS_UNREACHABLE),
        (ConditionStatus.TRUE, ADDON_STATUS_AVAILABLE),
        (ConditionStatus.FALSE, ADDON_STATUS_UNHEALTHY),
        (ConditionStatus.UNKNOWN, ADDON_STATUS_UNREACHABLE),
    ],
)
def test_get_addon_label_value(status, expected):
    assert get_addon_label_value(_addon("a", status=status)) == expected


def test_label_values_pinned():
    assert get_addon_label_value(_addon("a", status=ConditionStatus.TRUE)) == "available"
    assert get_addon_label_value(_addon("a", status=ConditionStatus.FALSE)) == "unhealthy"
    assert get_addon_label_value(_addon("a")) == "unreachable"

    ctrl, store = _controller(_cluster(), [_addon("x")])
    ctrl.sync_addon(CLUSTER_NAME, "x")
    assert store.actions[0].obj.metadata.labels == {
        "feature.open-cluster-management.io/addon-x": "unreachable"
    }


def test_merge_labels_adds_and_removes():
    merged, modified = merge_labels({"a": "1", "b": "2"}, {"a-": "", "c": "3"})
    assert modified is True
    assert merged == {"b": "2", "c": "3"}


def test_merge_labels_no_change():
    existing = {"a": "1"}
    merged, modified = merge_labels(existing, {"a": "1", "missing-": ""})
    assert modified is False
    assert merged == {"a": "1"}


def test_merge_labels_changes_value_without_touching_input():
    existing = {"a": "1"}
    merged, modified = merge_labels(existing, {"a": "2"})
    assert modified is True
    assert merged == {"a": "2"}
    assert existing == {"a": "1"}


def test_sync_addon_addon_deleted():
    ctrl, store = _controller(_cluster({_label("addon1"): ADDON_STATUS_AVAILABLE}))
    ctrl.sync_addon(CLUSTER_NAME, "addon1")
    assert [a.verb for a in store.actions] == ["update"]
    assert _label("addon1") not in store.actions[0].obj.metadata.labels


def test_sync_addon_addon_deleting():
    ctrl, store = _controller(_cluster(), [_addon("addon1", namespace="", deleting=True)])
    ctrl.sync_addon(CLUSTER_NAME, "addon1")
    assert store.actions == []


def test_sync_addon_new_addon_added():
    ctrl, store = _controller(_cluster(), [_addon("addon1")])
    ctrl.sync_addon(CLUSTER_NAME, "addon1")
    assert [a.verb for a in store.actions] == ["update"]
    assert store.actions[0].obj.metadata.labels[_label("addon1")] == ADDON_STATUS_UNREACHABLE


def test_sync_addon_status_updated():
    ctrl, store = _controller(
        _cluster({_label("addon1"): ADDON_STATUS_AVAILABLE}), [_addon("addon1")]
    )
    ctrl.sync_addon(CLUSTER_NAME, "addon1")
    assert [a.verb for a in store.actions] == ["update"]
    assert store.actions[0].obj.metadata.labels[_label("addon1")] == ADDON_STATUS_UNREACHABLE
    assert store.get(ManagedCluster, CLUSTER_NAME).metadata.labels == {
        _label("addon1"): ADDON_STATUS_UNREACHABLE
    }


def test_sync_addon_cluster_deleting():
    ctrl, store = _controller(_cluster(deleting=True), [_addon("addon1")])
    ctrl.sync_addon(CLUSTER_NAME, "addon1")
    assert store.actions == []


def test_sync_addon_missing_cluster_raises():
    ctrl, store = _controller(None, [_addon("addon1")])
    with pytest.raises(LookupError, match='unable to find cluster with name "cluster1"'):
        ctrl.sync_addon(CLUSTER_NAME, "addon1")
    assert store.actions == []


def test_sync_addon_key():
    ctrl, store = _controller(_cluster(), [_addon("addon1")])
    ctrl.sync(SyncContext("cluster1/addon1"))
    assert [a.verb for a in store.actions] == ["update"]
    assert store.actions[0].obj.metadata.labels[_label("addon1")] == ADDON_STATUS_UNREACHABLE


def test_sync_cluster_not_found():
    ctrl, store = _controller(None)
    ctrl.sync(SyncContext(CLUSTER_NAME))
    assert store.actions == []


def test_sync_cluster_deleting():
    ctrl, store = _controller(_cluster(deleting=True))
    ctrl.sync(SyncContext(CLUSTER_NAME))
    assert store.actions == []


def test_sync_cluster_no_change():
    ctrl, store = _controller(_cluster())
    ctrl.sync(SyncContext(CLUSTER_NAME))
    assert store.actions == []


def test_sync_cluster_synced():
    ctrl, store = _controller(
        _cluster({_label("addon4"): "available"}),
        [
            _addon("addon1"),
            _addon("addon2", deleting=True),
            _addon("addon3", status=ConditionStatus.TRUE),
        ],
    )
    ctrl.sync(SyncContext(CLUSTER_NAME))
    assert [a.verb for a in store.actions] == ["update"]
    labels = store.actions[0].obj.metadata.labels
    assert labels[_label("addon1")] == ADDON_STATUS_UNREACHABLE
    assert labels[_label("addon3")] == ADDON_STATUS_AVAILABLE
    assert _label("addon4") not in labels
    assert _label("addon2") not in labels


def test_sync_cluster_keeps_unrelated_labels():
    ctrl, store = _controller(_cluster({"env": "prod", _label("gone"): "available"}))
    ctrl.sync(SyncContext(CLUSTER_NAME))
    assert store.actions[0].obj.metadata.labels == {"env": "prod"}


def test_resync_enqueues_every_cluster():
    cluster_store = ResourceStore(
        ManagedCluster(metadata=ObjectMeta(name="c1")),
        ManagedCluster(metadata=ObjectMeta(name="c2")),
    )
    ctrl = AddOnFeatureDiscoveryController(cluster_store, ResourceStore())
    ctx = SyncContext(DEFAULT_QUEUE_KEY)
    ctrl.sync(ctx)
    assert len(ctx.queue) == 2
    assert {ctx.queue.get(0), ctx.queue.get(0)} == {"c1", "c2"}
    assert cluster_store.actions == []


def test_invalid_key_is_ignored():
    ctrl, store = _controller(_cluster({_label("x"): "available"}))
    ctrl.sync(SyncContext("a/b/c"))
    assert store.actions == []


def test_controller_queue_keys():
    ctrl, _ = _controller(_cluster())
    controller = ctrl.controller()
    assert controller.name == "AddOnFeatureDiscoveryController"
    assert controller.resync_interval == 600.0
    controller.enqueue(_addon("addon1"))
    controller.enqueue(_cluster())
    assert controller.queue.get(0) == "cluster1/addon1"
    assert controller.queue.get(0) == CLUSTER_NAME