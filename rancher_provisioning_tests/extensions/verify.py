"""Verification of machines of a provisioned cluster.

All `verify_*` functions return a list of human readable mismatches instead of raising on the
first one, so a single test run reports all discrepancies. An empty list means success.
"""

import dataclasses
import logging
import typing as tp

from rancher_provisioning_tests.extensions import topology
from rancher_provisioning_tests.utils import helpers

LOGGER = logging.getLogger(__name__)

WORKER_ROLE_LABEL = "rke.cattle.io/worker-role"
CONTROL_PLANE_ROLE_LABEL = "rke.cattle.io/control-plane-role"
ETCD_ROLE_LABEL = "rke.cattle.io/etcd-role"
LABELS_ANNOTATION = "rke.cattle.io/labels"
TAINTS_ANNOTATION = "rke.cattle.io/taints"

OS_LABEL = "cattle.io/os"
IMPLICIT_LABELS: dict[str, str] = {OS_LABEL: "linux"}

ROLE_LABELS = {
    topology.CONTROLPLANE: CONTROL_PLANE_ROLE_LABEL,
    topology.ETCD: ETCD_ROLE_LABEL,
    topology.WORKER: WORKER_ROLE_LABEL,
}


@dataclasses.dataclass(frozen=True)
class MachineRecord:
    """Machine of a cluster as reported by the control plane."""

    name: str
    labels: tp.Mapping[str, str] = dataclasses.field(default_factory=dict)
    annotations: tp.Mapping[str, str] = dataclasses.field(default_factory=dict)
    addresses: tuple[dict, ...] = ()

    @classmethod
    def from_object(cls, machine: dict) -> "MachineRecord":
        metadata = machine.get("metadata") or {}
        status = machine.get("status") or {}
        return cls(
            name=metadata.get("name") or "",
            labels=metadata.get("labels") or {},
            annotations=metadata.get("annotations") or {},
            addresses=tuple(status.get("addresses") or ()),
        )

    @property
    def roles(self) -> topology.NodeRoles:
        return topology.NodeRoles.from_mapping(
            {role: self.labels.get(label) == "true" for role, label in ROLE_LABELS.items()}
        )

    def decoded_labels(self) -> dict[str, str]:
        """Return the labels annotation, raise `ValueError` when it is not a JSON object."""
        labels = helpers.decode_json_annotation(self.annotations.get(LABELS_ANNOTATION), default={})
        if not isinstance(labels, dict):
            msg = f"Expected JSON object, got `{type(labels).__name__}`"
            raise ValueError(msg)
        return labels

    def decoded_taints(self) -> list[topology.Taint]:
        """Return the taints annotation, raise `ValueError` when it is not a list of objects.

        A `null` value, i.e. an encoded nil slice, means no taints.
        """
        taints = helpers.decode_json_annotation(
            self.annotations.get(TAINTS_ANNOTATION), default=[]
        )
        if taints is None:
            return []
        if not isinstance(taints, list) or not all(isinstance(t, dict) for t in taints):
            msg = f"Expected JSON list of objects, got `{taints!r}`"
            raise ValueError(msg)
        return [topology.Taint.from_dict(t) for t in taints]

    @property
    def has_taints(self) -> bool:
        try:
            return bool(self.decoded_taints())
        except ValueError:
            # Undecodable annotation is reported by `verify_taints`
            return True


def count_roles(machines: tp.Iterable[MachineRecord]) -> topology.RoleCounts:
    return topology.expected_role_counts(m.roles for m in machines)


def verify_roles(
    machines: tp.Sequence[MachineRecord], expected: topology.RoleCounts
) -> list[str]:
    """Check number of machines and number of machines holding each role."""
    actual = count_roles(machines)
    mismatches = []
    for field in dataclasses.fields(topology.RoleCounts):
        exp_val = getattr(expected, field.name)
        act_val = getattr(actual, field.name)
        if exp_val != act_val:
            what = "machines" if field.name == "total" else f"machines with '{field.name}' role"
            mismatches.append(f"Expected {exp_val} {what}, found {act_val}")
    return mismatches


def verify_role_labels(machine: MachineRecord, roles: topology.NodeRoles) -> list[str]:
    """Check that role labels of the machine match the requested roles."""
    mismatches = []
    for role, requested in roles.as_mapping().items():
        label = ROLE_LABELS[role]
        value = machine.labels.get(label)
        if requested and value != "true":
            mismatches.append(f"{machine.name}: label '{label}' is '{value}', expected 'true'")
        elif not requested and value == "true":
            mismatches.append(f"{machine.name}: unexpected role label '{label}'")
    return mismatches


def verify_labels(machine: MachineRecord, expected: tp.Mapping[str, str]) -> list[str]:
    """Check the labels annotation, the implicit OS label is always expected."""
    if not machine.annotations.get(LABELS_ANNOTATION):
        return [f"{machine.name}: annotation '{LABELS_ANNOTATION}' is empty"]

    try:
        actual = machine.decoded_labels()
    except ValueError as exc:
        return [f"{machine.name}: cannot decode '{LABELS_ANNOTATION}': {exc}"]

    expected_all = {**IMPLICIT_LABELS, **expected}
    mismatches = []
    for key in sorted(set(expected_all) | set(actual)):
        if key not in actual:
            mismatches.append(f"{machine.name}: missing label '{key}={expected_all[key]}'")
        elif key not in expected_all:
            mismatches.append(f"{machine.name}: unexpected label '{key}={actual[key]}'")
        elif actual[key] != expected_all[key]:
            mismatches.append(
                f"{machine.name}: label '{key}' is '{actual[key]}', expected '{expected_all[key]}'"
            )
    return mismatches


def verify_taints(machine: MachineRecord, expected: tp.Iterable[topology.Taint]) -> list[str]:
    """Check the taints annotation, taints are compared as a set."""
    try:
        actual = machine.decoded_taints()
    except ValueError as exc:
        return [f"{machine.name}: cannot decode '{TAINTS_ANNOTATION}': {exc}"]

    expected_set = set(expected)
    actual_set = set(actual)
    mismatches = [f"{machine.name}: missing taint '{t}'" for t in sorted(expected_set - actual_set)]
    mismatches.extend(
        f"{machine.name}: unexpected taint '{t}'" for t in sorted(actual_set - expected_set)
    )
    if len(actual) != len(actual_set):
        mismatches.append(f"{machine.name}: duplicate taints in {[str(t) for t in actual]}")
    return mismatches


def verify_addresses(machine: MachineRecord, count: int) -> list[str]:
    if len(machine.addresses) != count:
        return [f"{machine.name}: expected {count} addresses, found {len(machine.addresses)}"]
    return []


def verify_single_tainted(
    machines: tp.Sequence[MachineRecord], expected: tp.Iterable[topology.Taint]
) -> list[str]:
    """Check that exactly one machine carries taints, and that they are the expected ones."""
    tainted = [m for m in machines if m.has_taints]
    if len(tainted) != 1:
        return [
            f"Expected exactly one tainted machine, found {len(tainted)}: "
            f"{[m.name for m in tainted]}"
        ]
    return verify_taints(tainted[0], expected)
