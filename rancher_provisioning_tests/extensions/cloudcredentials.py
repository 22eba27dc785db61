"""Cloud providers of node-driver clusters.

A provider knows how to create a cloud credential and how to describe a machine of its cloud.
The cluster driver only uses the `CloudProvider` interface.
"""

import logging
import typing as tp

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.utils import cattle_config
from rancher_provisioning_tests.utils import helpers

LOGGER = logging.getLogger(__name__)

MACHINE_CONFIG_GROUP = "rke-machine-config.cattle.io"
MACHINE_CONFIG_VERSION = "v1"
CREDENTIAL_TYPE = "provisioning.cattle.io/cloud-credential"


class CloudProvider:
    """Base class for cloud providers."""

    name: tp.ClassVar[str] = ""
    # Keys of the test config sections
    credentials_key: tp.ClassVar[str] = ""
    machine_config_key: tp.ClassVar[str] = ""
    # Name of the credential config in the cloud credential object
    credential_config_field: tp.ClassVar[str] = ""
    machine_config_kind: tp.ClassVar[str] = ""
    resource_plural: tp.ClassVar[str] = ""
    cluster_name_prefix: tp.ClassVar[str] = ""

    def __init__(
        self, credentials: dict | None = None, machine_config: dict | None = None
    ) -> None:
        if credentials is None:
            credentials = cattle_config.get_section(self.credentials_key)
        if machine_config is None:
            machine_config = cattle_config.get_section(self.machine_config_key)
        self.credentials = credentials
        self.machine_config = machine_config

    def credential_payload(self, name: str) -> dict:
        return {
            "type": CREDENTIAL_TYPE,
            "name": name,
            self.credential_config_field: dict(self.credentials),
        }

    def create_credential(self, client: rancher.RancherClient) -> str:
        """Create cloud credential, register its deletion and return its ID."""
        name = f"{self.name}-{helpers.get_rand_str(5)}"
        resp = client.post("/v3/cloudcredentials", json=self.credential_payload(name=name))
        credential_id = resp["id"]
        client.session.defer(
            client.delete_if_exists,
            f"/v3/cloudCredentials/{credential_id}",
            description=f"delete cloud credential '{credential_id}'",
        )
        LOGGER.info(f"Created {self.name} cloud credential '{credential_id}'.")
        return credential_id

    def machine_fields(self) -> dict:
        raise NotImplementedError

    def new_machine_config(self, generated_pool_name: str, namespace: str) -> dict:
        """Return manifest of the machine config object."""
        return {
            "apiVersion": f"{MACHINE_CONFIG_GROUP}/{MACHINE_CONFIG_VERSION}",
            "kind": self.machine_config_kind,
            "metadata": {"generateName": generated_pool_name, "namespace": namespace},
            **self.machine_fields(),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class DigitalOcean(CloudProvider):
    name = "digitalocean"
    credentials_key = "digitalOceanCredentials"
    machine_config_key = "doMachineConfig"
    credential_config_field = "digitaloceancredentialConfig"
    machine_config_kind = "DigitaloceanConfig"
    resource_plural = "digitaloceanconfigs"
    cluster_name_prefix = "automationdo-"

    def machine_fields(self) -> dict:
        mc = self.machine_config
        return {
            "accessToken": "",
            "image": mc.get("image", "ubuntu-20-04-x64"),
            "backups": bool(mc.get("backups", False)),
            "ipv6": bool(mc.get("ipv6", False)),
            "monitoring": bool(mc.get("monitoring", False)),
            "privateNetworking": bool(mc.get("privateNetworking", False)),
            "region": mc.get("region", "nyc3"),
            "size": mc.get("size", "s-4vcpu-8gb"),
            "sshKeyContents": mc.get("sshKeyContents", ""),
            "sshKeyFingerprint": mc.get("sshKeyFingerprint", ""),
            "sshPort": str(mc.get("sshPort", "22")),
            "sshUser": mc.get("sshUser", "root"),
            "tags": mc.get("tags", ""),
            "userdata": mc.get("userdata", ""),
        }


class AWS(CloudProvider):
    name = "aws"
    credentials_key = "awsCredentials"
    machine_config_key = "awsMachineConfig"
    credential_config_field = "amazonec2credentialConfig"
    machine_config_kind = "Amazonec2Config"
    resource_plural = "amazonec2configs"
    cluster_name_prefix = "automationaws-"

    def credential_payload(self, name: str) -> dict:
        payload = super().credential_payload(name=name)
        payload[self.credential_config_field].setdefault("defaultRegion", "us-east-2")
        return payload

    def machine_fields(self) -> dict:
        mc = self.machine_config
        return {
            "region": mc.get("region", "us-east-2"),
            "ami": mc.get("ami", ""),
            "instanceType": mc.get("instanceType", "t3a.medium"),
            "sshUser": mc.get("sshUser", "ubuntu"),
            "vpcId": mc.get("vpcId", ""),
            "subnetId": mc.get("subnetId", ""),
            "zone": mc.get("zone", "a"),
            "rootSize": str(mc.get("rootSize", "16")),
            "volumeType": mc.get("volumeType", "gp2"),
            "securityGroup": list(mc.get("securityGroup", ["rancher-nodes"])),
            "iamInstanceProfile": mc.get("iamInstanceProfile", ""),
            "retries": str(mc.get("retries", "5")),
        }


class Harvester(CloudProvider):
    name = "harvester"
    credentials_key = "harvesterCredentials"
    machine_config_key = "harvesterMachineConfig"
    credential_config_field = "harvestercredentialConfig"
    machine_config_kind = "HarvesterConfig"
    resource_plural = "harvesterconfigs"
    cluster_name_prefix = "automationharvester-"

    def machine_fields(self) -> dict:
        mc = self.machine_config
        return {
            "vmNamespace": mc.get("vmNamespace", "default"),
            "cpuCount": str(mc.get("cpuCount", "2")),
            "memorySize": str(mc.get("memorySize", "4")),
            "diskSize": str(mc.get("diskSize", "40")),
            "diskBus": mc.get("diskBus", "virtio"),
            "imageName": mc.get("imageName", ""),
            "networkName": mc.get("networkName", ""),
            "networkModel": mc.get("networkModel", "virtio"),
            "sshUser": mc.get("sshUser", "ubuntu"),
            "userData": mc.get("userData", ""),
            "networkData": mc.get("networkData", ""),
        }


PROVIDERS: dict[str, type[CloudProvider]] = {
    p.name: p for p in (DigitalOcean, AWS, Harvester)
}


def get_provider(name: str) -> CloudProvider:
    """Return provider by its name, with config taken from the test config."""
    try:
        provider_cls = PROVIDERS[name.lower()]
    except KeyError:
        msg = f"Unknown cloud provider '{name}', known providers: {sorted(PROVIDERS)}"
        raise ValueError(msg) from None
    return provider_cls()
