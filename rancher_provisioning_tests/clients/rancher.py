"""Client for the Rancher server under test.

Rancher exposes two APIs that the tests need:

* the management ("norman") REST API under `/v3` - users, role bindings, login, cloud credentials,
* the Kubernetes API of the local cluster proxied under `/k8s/clusters/local` - provisioning
  clusters, machines, machine configs, registration tokens, secrets and pods.

A `RancherClient` is bound to a `Session`. Helpers that create resources through the client
register deletion of those resources on the client's session.
"""

import dataclasses
import functools
import logging
import typing as tp

import kubernetes.client
import requests

from rancher_provisioning_tests.framework import session as session_mod
from rancher_provisioning_tests.utils import configuration
from rancher_provisioning_tests.utils import http_client

LOGGER = logging.getLogger(__name__)

LOCAL_CLUSTER_PATH = "/k8s/clusters/local"


class RancherAPIError(Exception):
    def __init__(self, status: int, message: str) -> None:
        self.status = status
        super().__init__(f"[{status}] {message}")


@dataclasses.dataclass(frozen=True, order=True)
class User:
    id: str
    username: str
    password: str = dataclasses.field(repr=False, default="")


class RancherClient:
    """Management and Kubernetes API client acting as a single Rancher user."""

    def __init__(
        self,
        host: str,
        token: str,
        session: session_mod.Session,
        insecure: bool = configuration.RANCHER_INSECURE,
        http: requests.Session | None = None,
        user: User | None = None,
    ) -> None:
        if not host:
            msg = "Rancher host is not set."
            raise ValueError(msg)
        self.host = host.rstrip("/")
        self.token = token
        self.session = session
        self.insecure = insecure
        self.http = http or http_client.get_session()
        self.user = user

    def __repr__(self) -> str:
        user = self.user.username if self.user else "admin"
        return f"<RancherClient: host='{self.host}', user='{user}', session='{self.session.name}'>"

    @functools.cached_property
    def api_client(self) -> kubernetes.client.ApiClient:
        k8s_config = kubernetes.client.Configuration()
        k8s_config.host = f"{self.host}{LOCAL_CLUSTER_PATH}"
        k8s_config.api_key = {"authorization": self.token}
        k8s_config.api_key_prefix = {"authorization": "Bearer"}
        k8s_config.verify_ssl = not self.insecure
        return kubernetes.client.ApiClient(configuration=k8s_config)

    @functools.cached_property
    def custom_objects(self) -> kubernetes.client.CustomObjectsApi:
        return kubernetes.client.CustomObjectsApi(self.api_client)

    @functools.cached_property
    def core(self) -> kubernetes.client.CoreV1Api:
        return kubernetes.client.CoreV1Api(self.api_client)

    def with_session(self, session: session_mod.Session) -> "RancherClient":
        """Return a client with the same identity that registers cleanups on `session`."""
        client = RancherClient(
            host=self.host,
            token=self.token,
            session=session,
            insecure=self.insecure,
            http=self.http,
            user=self.user,
        )
        session.defer(client.close, description=f"close client of session '{session.name}'")
        return client

    def as_user(self, user: User) -> "RancherClient":
        """Log in as `user` and return a client acting with the user's token."""
        resp = self._request(
            "POST",
            "/v3-public/localProviders/local",
            params={"action": "login"},
            json={"username": user.username, "password": user.password, "responseType": "json"},
            authenticated=False,
        )
        token = resp.get("token")
        if not token:
            msg = f"Login of user '{user.username}' didn't return a token."
            raise RancherAPIError(status=0, message=msg)
        LOGGER.info(f"Logged in as user '{user.username}'.")
        client = RancherClient(
            host=self.host,
            token=token,
            session=self.session,
            insecure=self.insecure,
            http=self.http,
            user=user,
        )
        self.session.defer(client.close, description=f"close client of '{user.username}'")
        return client

    def _request(
        self,
        method: str,
        path: str,
        *,
        authenticated: bool = True,
        **kwargs: tp.Any,
    ) -> dict:
        url = f"{self.host}{path}"
        headers = kwargs.pop("headers", {})
        if authenticated:
            headers["Authorization"] = f"Bearer {self.token}"
        LOGGER.debug(f"{method} {url}")
        response = self.http.request(method, url, headers=headers, **kwargs)
        if not response.ok:
            raise RancherAPIError(status=response.status_code, message=response.text)
        if not response.content:
            return {}
        return response.json()

    def get(self, path: str, **kwargs: tp.Any) -> dict:
        return self._request("GET", path, **kwargs)

    def post(self, path: str, json: dict, **kwargs: tp.Any) -> dict:
        return self._request("POST", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs: tp.Any) -> dict:
        return self._request("DELETE", path, **kwargs)

    def delete_if_exists(self, path: str) -> None:
        """Delete a management API object, ignore already deleted objects."""
        try:
            self.delete(path)
        except RancherAPIError as exc:
            if exc.status != 404:
                raise
            LOGGER.debug(f"Object '{path}' was already deleted.")

    def close(self) -> None:
        if "api_client" in self.__dict__:
            self.api_client.close()


def get_admin_client(session: session_mod.Session) -> RancherClient:
    """Return client acting as the admin user configured in the environment."""
    if not (configuration.RANCHER_HOST and configuration.RANCHER_ADMIN_TOKEN):
        msg = "`RANCHER_HOST` and `RANCHER_ADMIN_TOKEN` need to be set."
        raise RuntimeError(msg)
    client = RancherClient(
        host=configuration.RANCHER_HOST,
        token=configuration.RANCHER_ADMIN_TOKEN,
        session=session,
    )
    session.defer(client.close, description="close admin client")
    return client
