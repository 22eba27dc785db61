"""Assignment of roles, labels and taints to the nodes of a cluster."""

import collections
import dataclasses
import typing as tp

CONTROLPLANE = "controlplane"
ETCD = "etcd"
WORKER = "worker"

ALL_ROLES = (CONTROLPLANE, ETCD, WORKER)

# Taint effects accepted by Kubernetes
TAINT_EFFECTS = frozenset({"NoSchedule", "PreferNoSchedule", "NoExecute"})


@dataclasses.dataclass(frozen=True, order=True)
class NodeRoles:
    """Roles of a single node.

    Any combination is a valid input, including the empty one - invalid combinations are test
    cases as well.
    """

    controlplane: bool = False
    etcd: bool = False
    worker: bool = False

    @classmethod
    def from_mapping(cls, roles: tp.Mapping[str, bool]) -> "NodeRoles":
        unknown = set(roles) - set(ALL_ROLES)
        if unknown:
            msg = f"Unknown node role(s): {sorted(unknown)}"
            raise ValueError(msg)
        return cls(
            controlplane=bool(roles.get(CONTROLPLANE)),
            etcd=bool(roles.get(ETCD)),
            worker=bool(roles.get(WORKER)),
        )

    @classmethod
    def all(cls) -> "NodeRoles":
        return cls(controlplane=True, etcd=True, worker=True)

    def as_mapping(self) -> dict[str, bool]:
        return {CONTROLPLANE: self.controlplane, ETCD: self.etcd, WORKER: self.worker}

    @property
    def is_empty(self) -> bool:
        return not (self.controlplane or self.etcd or self.worker)

    def flags(self) -> list[str]:
        """Return role flags of the join command, in the `--worker --etcd --controlplane` order."""
        flags = []
        if self.worker:
            flags.append("--worker")
        if self.etcd:
            flags.append("--etcd")
        if self.controlplane:
            flags.append("--controlplane")
        return flags

    def __str__(self) -> str:
        return "+".join(r for r, v in self.as_mapping().items() if v) or "none"


@dataclasses.dataclass(frozen=True, order=True)
class Taint:
    key: str
    value: str
    effect: str

    @classmethod
    def from_dict(cls, taint: tp.Mapping[str, tp.Any]) -> "Taint":
        return cls(
            key=str(taint.get("key") or ""),
            value=str(taint.get("value") or ""),
            effect=str(taint.get("effect") or ""),
        )

    @classmethod
    def parse(cls, taint_str: str) -> "Taint":
        """Parse taint in the `key=value:Effect` format."""
        key_value, sep, effect = taint_str.rpartition(":")
        if not sep:
            msg = f"Invalid taint '{taint_str}', expected 'key=value:Effect'"
            raise ValueError(msg)
        key, __, value = key_value.partition("=")
        return cls(key=key, value=value, effect=effect)

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "value": self.value, "effect": self.effect}

    def __str__(self) -> str:
        return f"{self.key}={self.value}:{self.effect}"


@dataclasses.dataclass(frozen=True)
class NodeSpec:
    """Everything that is passed to the join command of a single node."""

    roles: NodeRoles
    labels: tp.Mapping[str, str] = dataclasses.field(default_factory=dict)
    taints: tuple[Taint, ...] = ()


@dataclasses.dataclass(frozen=True, order=True)
class RoleCounts:
    controlplane: int = 0
    etcd: int = 0
    worker: int = 0
    total: int = 0


def expected_role_counts(node_roles: tp.Iterable[NodeRoles]) -> RoleCounts:
    """Return number of nodes holding each role.

    Nodes may hold several roles, only the aggregate per-role counts are computed.
    """
    counter: collections.Counter = collections.Counter()
    total = 0
    for roles in node_roles:
        total += 1
        counter.update(r for r, v in roles.as_mapping().items() if v)
    return RoleCounts(
        controlplane=counter[CONTROLPLANE],
        etcd=counter[ETCD],
        worker=counter[WORKER],
        total=total,
    )
