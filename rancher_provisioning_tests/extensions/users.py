import logging

from rancher_provisioning_tests.clients import rancher

LOGGER = logging.getLogger(__name__)

MANAGEMENT_GROUP = "management.cattle.io"
MANAGEMENT_VERSION = "v3"

DEFAULT_PASSWORD = "rancherrancher123!"


def create_user_with_role(
    client: rancher.RancherClient,
    username: str,
    role: str = "user",
    password: str = DEFAULT_PASSWORD,
) -> rancher.User:
    """Create a user with global role and register its deletion."""
    resp = client.post(
        "/v3/users",
        json={
            "type": "user",
            "username": username,
            "name": username,
            "password": password,
            "enabled": True,
            "mustChangePassword": False,
        },
    )
    user = rancher.User(id=resp["id"], username=username, password=password)
    client.session.defer(
        client.delete_if_exists,
        f"/v3/users/{user.id}",
        description=f"delete user '{username}'",
    )

    client.post(
        "/v3/globalrolebindings",
        json={"type": "globalRoleBinding", "globalRoleId": role, "userId": user.id},
    )
    LOGGER.info(f"Created user '{username}' with global role '{role}'.")
    return user


def get_system_agent_version(client: rancher.RancherClient) -> str:
    """Return value of the `system-agent-version` setting."""
    setting = client.custom_objects.get_cluster_custom_object(
        group=MANAGEMENT_GROUP,
        version=MANAGEMENT_VERSION,
        plural="settings",
        name="system-agent-version",
    )
    return setting.get("value") or ""
