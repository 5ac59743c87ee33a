"""Validation of NodeDriver admission requests."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from cattlewebhook.admission import (
    DecodeError,
    GroupVersionResource,
    Operation,
    Request,
    Response,
    Status,
    response_allowed,
)

MACHINE_GROUP = "rke-machine.cattle.io"
MACHINE_VERSION = "v1"

_DRIVER_IN_USE = "This driver is in use by existing nodes and cannot be disabled"

_NodeLister = Callable[[], Iterable["Node"]]
_MachineLister = Callable[[str], Sequence[Any]]


@dataclass
class NodeDriver:
    """A driver used to provision nodes for clusters."""

    name: str = ""
    display_name: str = ""
    active: bool = False
    annotations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NodeDriver:
        meta = data.get("metadata") or {}
        spec = data.get("spec") or {}
        return cls(
            name=meta.get("name", ""),
            display_name=spec.get("displayName", ""),
            active=bool(spec.get("active", False)),
            annotations=dict(meta.get("annotations") or {}),
        )


@dataclass
class Node:
    """A node of an RKE1 cluster; template_driver is None without a node template."""

    name: str = ""
    template_driver: str | None = None


class NodeDriverValidator:
    """Refuses to disable a node driver while nodes or machines still use it.

    node_lister() returns all RKE1 nodes; machine_lister(kind) returns the
    machines of the given kind in the rke-machine.cattle.io/v1 group.
    """

    gvr = GroupVersionResource("management.cattle.io", "v3", "nodedrivers")

    def __init__(self, node_lister: _NodeLister, machine_lister: _MachineLister) -> None:
        self._list_nodes = node_lister
        self._list_machines = machine_lister

    def operations(self) -> list[Operation]:
        return [Operation.UPDATE, Operation.DELETE]

    def admit(self, request: Request) -> Response:
        """Decide on the request; raises DecodeError or RuntimeError when it cannot."""
        try:
            new_data = request.new_object()
            old_data = request.old_object()
        except DecodeError as exc:
            raise DecodeError(f"failed to decode object from request: {exc}") from exc
        new = NodeDriver.from_dict(new_data)
        old = NodeDriver.from_dict(old_data) if old_data is not None else NodeDriver()

        disabling = (request.operation is Operation.DELETE and old.active) or (
            request.operation is Operation.UPDATE and old.active and not new.active
        )
        if not disabling:
            return response_allowed()

        rke1_deleted = self._rke1_resources_deleted(old)
        rke2_deleted = self._rke2_resources_deleted(old)
        if not (rke1_deleted and rke2_deleted):
            return Response(allowed=False, result=Status(status="Failure", message=_DRIVER_IN_USE))
        return response_allowed()

    def _rke1_resources_deleted(self, driver: NodeDriver) -> bool:
        try:
            nodes = list(self._list_nodes())
        except Exception as exc:
            raise RuntimeError(f"error listing nodes from cache: {exc}") from exc
        return not any(
            node.template_driver is not None and node.template_driver == driver.display_name
            for node in nodes
        )

    def _rke2_resources_deleted(self, driver: NodeDriver) -> bool:
        kind = driver.display_name + "machine"
        try:
            machines = self._list_machines(kind)
        except Exception as exc:
            raise RuntimeError(f"error listing {driver.display_name}machines: {exc}") from exc
        return len(machines) == 0