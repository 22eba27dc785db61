"""Loading of the provisioning input from the `CATTLE_TEST_CONFIG` file.

The file is YAML (JSON works as well, as YAML is its superset). Only the keys used by the live
tests are read, e.g.

.. code-block:: yaml

    provisioningInput:
      kubernetesVersion: ["v1.27.10+rke2r1"]
      cni: ["calico", "canal"]
      providers: ["digitalocean"]
      nodesAndRoles:
        - {controlplane: true, etcd: true, worker: true}
    digitalOceanCredentials:
      accessToken: "..."
    doMachineConfig:
      region: nyc3
"""

import dataclasses
import functools
import logging
import pathlib as pl
import typing as tp

import yaml

from rancher_provisioning_tests.utils import configuration

LOGGER = logging.getLogger(__name__)

PROVISIONING_INPUT_KEY = "provisioningInput"


class ConfigError(Exception):
    pass


@dataclasses.dataclass(frozen=True)
class ProvisioningInput:
    kubernetes_versions: tuple[str, ...] = ()
    cnis: tuple[str, ...] = ()
    providers: tuple[str, ...] = ()
    nodes_and_roles: tuple[dict[str, bool], ...] = ()


def _as_str_tuple(value: tp.Any, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list):
        msg = f"`{key}` must be a list of strings, got: {value!r}"
        raise ConfigError(msg)
    return tuple(str(v) for v in value)


def parse_provisioning_input(content: dict) -> ProvisioningInput:
    """Parse the `provisioningInput` section of the test config."""
    section = content.get(PROVISIONING_INPUT_KEY) or {}
    if not isinstance(section, dict):
        msg = f"`{PROVISIONING_INPUT_KEY}` must be a mapping"
        raise ConfigError(msg)

    nodes_and_roles = section.get("nodesAndRoles") or []
    if not isinstance(nodes_and_roles, list) or not all(
        isinstance(r, dict) for r in nodes_and_roles
    ):
        msg = "`nodesAndRoles` must be a list of mappings"
        raise ConfigError(msg)

    return ProvisioningInput(
        kubernetes_versions=_as_str_tuple(section.get("kubernetesVersion"), "kubernetesVersion"),
        cnis=_as_str_tuple(section.get("cni"), "cni"),
        providers=_as_str_tuple(section.get("providers"), "providers"),
        nodes_and_roles=tuple(
            {str(k): bool(v) for k, v in roles.items()} for roles in nodes_and_roles
        ),
    )


def load_config_file(config_file: str | pl.Path) -> dict:
    """Load the test config file."""
    with open(config_file, encoding="utf-8") as in_fp:
        content = yaml.safe_load(in_fp) or {}
    if not isinstance(content, dict):
        msg = f"Test config '{config_file}' doesn't contain a mapping"
        raise ConfigError(msg)
    return content


@functools.cache
def get_config() -> dict:
    """Return content of the `CATTLE_TEST_CONFIG` file, empty dict if not configured."""
    if not configuration.CATTLE_TEST_CONFIG:
        LOGGER.warning("`CATTLE_TEST_CONFIG` is not set, using empty test config.")
        return {}
    return load_config_file(configuration.CATTLE_TEST_CONFIG)


def get_section(key: str) -> dict:
    """Return a mapping section of the test config."""
    section = get_config().get(key) or {}
    if not isinstance(section, dict):
        msg = f"`{key}` must be a mapping"
        raise ConfigError(msg)
    return section


@functools.cache
def get_provisioning_input() -> ProvisioningInput:
    return parse_provisioning_input(get_config())
