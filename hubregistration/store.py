"""An in-memory resource store that serves both cached reads and recorded client writes."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .objects import (
    Condition,
    ManagedCluster,
    ManagedClusterAddOn,
    NotFoundError,
    set_status_condition,
)

Reaction = Callable[["Action"], Any]


@dataclass(frozen=True)
class Action:
    """A client call made against the store."""

    verb: str
    kind: str
    name: str
    namespace: str = ""
    obj: Any = None
    subresource: str = ""


class ResourceStore:
    """Holds resources by kind, namespace and name.

    Reads through get and list are cache reads and are not recorded; create,
    update, update_status and delete are client calls and are appended to
    ``actions``. Reactors may answer a client call in place of the store.
    """

    def __init__(self, *objects: Any) -> None:
        self._objects: dict[tuple[type, str, str], Any] = {}
        self._reactors: list[tuple[str, type, Reaction]] = []
        self._lock = threading.RLock()
        self.actions: list[Action] = []
        for obj in objects:
            self.add(obj)

    @staticmethod
    def _key(obj: Any) -> tuple[type, str, str]:
        return type(obj), obj.metadata.namespace, obj.metadata.name

    def add(self, obj: Any) -> None:
        """Put an object into the store without recording a client call."""
        with self._lock:
            self._objects[self._key(obj)] = copy.deepcopy(obj)

    def get(self, kind: type, name: str, namespace: str = "") -> Any:
        """Return a copy of the named object, or raise NotFoundError."""
        with self._lock:
            try:
                return copy.deepcopy(self._objects[(kind, namespace, name)])
            except KeyError:
                raise NotFoundError(kind.KIND, name) from None

    def list(
        self,
        kind: type,
        namespace: str | None = None,
        selector: Mapping[str, str] | None = None,
    ) -> list[Any]:
        """Return copies of objects of a kind, optionally in one namespace and matching labels."""
        selector = selector or {}
        with self._lock:
            found = [
                obj
                for (obj_kind, obj_ns, _), obj in self._objects.items()
                if obj_kind is kind
                and (namespace is None or obj_ns == namespace)
                and all(obj.metadata.labels.get(k) == v for k, v in selector.items())
            ]
            found.sort(key=lambda o: (o.metadata.namespace, o.metadata.name))
            return copy.deepcopy(found)

    def prepend_reactor(self, verb: str, kind: type, reaction: Reaction) -> None:
        """Register a reaction tried before others; it returns a result, or None to pass."""
        with self._lock:
            self._reactors.insert(0, (verb, kind, reaction))

    def _record(self, verb: str, kind: type, name: str, namespace: str, obj: Any = None,
                subresource: str = "") -> tuple[bool, Any]:
        action = Action(verb, kind.KIND, name, namespace, copy.deepcopy(obj), subresource)
        self.actions.append(action)
        for reactor_verb, reactor_kind, reaction in self._reactors:
            if reactor_verb not in (verb, "*") or reactor_kind is not kind:
                continue
            result = reaction(action)
            if result is not None:
                return True, result
        return False, None

    def _fetch(self, kind: type, name: str, namespace: str = "") -> Any:
        with self._lock:
            handled, result = self._record("get", kind, name, namespace)
            return result if handled else self.get(kind, name, namespace)

    def create(self, obj: Any) -> Any:
        """Create an object. Objects without a name are answered but not kept."""
        with self._lock:
            kind, namespace, name = self._key(obj)
            handled, result = self._record("create", kind, name, namespace, obj)
            if handled:
                return result
            if name:
                if (kind, namespace, name) in self._objects:
                    raise ValueError(f'{kind.KIND.lower()} "{name}" already exists')
                self._objects[(kind, namespace, name)] = copy.deepcopy(obj)
            return copy.deepcopy(obj)

    def _replace(self, obj: Any, subresource: str) -> Any:
        with self._lock:
            key = self._key(obj)
            kind, namespace, name = key
            handled, result = self._record("update", kind, name, namespace, obj, subresource)
            if handled:
                return result
            if key not in self._objects:
                raise NotFoundError(kind.KIND, name)
            self._objects[key] = copy.deepcopy(obj)
            return copy.deepcopy(obj)

    def update(self, obj: Any) -> Any:
        """Replace an existing object."""
        return self._replace(obj, "")

    def update_status(self, obj: Any) -> Any:
        """Replace an existing object through its status subresource."""
        return self._replace(obj, "status")

    def delete(self, kind: type, name: str, namespace: str = "") -> None:
        """Remove an object, or raise NotFoundError."""
        with self._lock:
            handled, _ = self._record("delete", kind, name, namespace)
            if handled:
                return
            if self._objects.pop((kind, namespace, name), None) is None:
                raise NotFoundError(kind.KIND, name)


def _apply_condition(client: ResourceStore, obj: Any, condition: Condition) -> tuple[Any, bool]:
    original = copy.deepcopy(obj.conditions)
    set_status_condition(obj.conditions, copy.deepcopy(condition))
    if obj.conditions == original:
        return obj, False
    return client.update_status(obj), True


def update_managed_cluster_condition(
    client: ResourceStore, cluster_name: str, condition: Condition
) -> tuple[ManagedCluster, bool]:
    """Set a condition on a managed cluster; return the cluster and whether it changed."""
    cluster = client._fetch(ManagedCluster, cluster_name)
    return _apply_condition(client, cluster, condition)


def update_addon_condition(
    client: ResourceStore, namespace: str, name: str, condition: Condition
) -> tuple[ManagedClusterAddOn, bool]:
    """Set a condition on a managed cluster add-on; return it and whether it changed."""
    addon = client._fetch(ManagedClusterAddOn, name, namespace)
    return _apply_condition(client, addon, condition)