"""In-memory stand-ins for the Kubernetes and Rancher APIs."""

import itertools
import threading
import types
import typing as tp

from kubernetes.client import exceptions as k8s_exceptions

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.framework import session as session_mod

_COUNTER = itertools.count(1)


def api_error(status: int) -> k8s_exceptions.ApiException:
    return k8s_exceptions.ApiException(status=status, reason=f"status {status}")


def _with_name(body: dict) -> dict:
    """Return copy of the object with `metadata.name` resolved from `generateName`."""
    obj = {**body, "metadata": dict(body.get("metadata") or {})}
    metadata = obj["metadata"]
    if not metadata.get("name"):
        metadata["name"] = f"{metadata.get('generateName', 'obj-')}{next(_COUNTER):05d}"
    return obj


def _matches_labels(obj: dict, label_selector: str) -> bool:
    if not label_selector:
        return True
    labels = (obj.get("metadata") or {}).get("labels") or {}
    for requirement in label_selector.split(","):
        key, __, value = requirement.partition("=")
        if labels.get(key) != value:
            return False
    return True


class FakeCustomObjectsApi:
    """Subset of `kubernetes.client.CustomObjectsApi` backed by a dict."""

    def __init__(self) -> None:
        self.objects: dict[tuple, dict] = {}
        self.deleted: list[tuple] = []
        self.create_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.list_error: Exception | None = None

    def add(self, group: str, version: str, namespace: str, plural: str, obj: dict) -> dict:
        obj = _with_name(obj)
        self.objects[(group, version, namespace, plural, obj["metadata"]["name"])] = obj
        return obj

    def create_namespaced_custom_object(
        self, group: str, version: str, namespace: str, plural: str, body: dict, **kwargs: tp.Any
    ) -> dict:
        if self.create_error:
            raise self.create_error
        obj = self.add(group, version, namespace, plural, body)
        obj["metadata"]["namespace"] = namespace
        return obj

    def get_namespaced_custom_object(
        self, group: str, version: str, namespace: str, plural: str, name: str
    ) -> dict:
        try:
            return self.objects[(group, version, namespace, plural, name)]
        except KeyError:
            raise api_error(404) from None

    def get_cluster_custom_object(self, group: str, version: str, plural: str, name: str) -> dict:
        return self.get_namespaced_custom_object(group, version, "", plural, name)

    def list_namespaced_custom_object(
        self,
        group: str,
        version: str,
        namespace: str,
        plural: str,
        label_selector: str = "",
        **kwargs: tp.Any,
    ) -> dict:
        if self.list_error:
            raise self.list_error
        items = [
            obj
            for key, obj in self.objects.items()
            if key[:4] == (group, version, namespace, plural)
            and _matches_labels(obj, label_selector)
        ]
        return {"items": items}

    def delete_namespaced_custom_object(
        self, group: str, version: str, namespace: str, plural: str, name: str
    ) -> dict:
        if self.delete_error:
            raise self.delete_error
        key = (group, version, namespace, plural, name)
        if key not in self.objects:
            raise api_error(404)
        del self.objects[key]
        self.deleted.append(key)
        return {}


class FakeCoreV1Api:
    """Subset of `kubernetes.client.CoreV1Api` for secrets and pods."""

    def __init__(self, fail_pods_after: int | None = None) -> None:
        self.secrets: dict[tuple[str, str], dict] = {}
        self.pods: dict[tuple[str, str], dict] = {}
        self.fail_pods_after = fail_pods_after
        self._lock = threading.Lock()
        self._pods_created = 0

    def _create(self, store: dict, namespace: str, body: dict) -> types.SimpleNamespace:
        obj = _with_name(body)
        name = obj["metadata"]["name"]
        store[(namespace, name)] = obj
        return types.SimpleNamespace(metadata=types.SimpleNamespace(name=name))

    def _delete(self, store: dict, name: str, namespace: str) -> None:
        with self._lock:
            if (namespace, name) not in store:
                raise api_error(404)
            del store[(namespace, name)]

    def create_namespaced_secret(self, namespace: str, body: dict) -> types.SimpleNamespace:
        with self._lock:
            return self._create(self.secrets, namespace, body)

    def create_namespaced_pod(self, namespace: str, body: dict) -> types.SimpleNamespace:
        with self._lock:
            self._pods_created += 1
            if self.fail_pods_after is not None and self._pods_created > self.fail_pods_after:
                raise api_error(403)
            return self._create(self.pods, namespace, body)

    def delete_namespaced_secret(self, name: str, namespace: str) -> None:
        self._delete(self.secrets, name, namespace)

    def delete_namespaced_pod(self, name: str, namespace: str) -> None:
        self._delete(self.pods, name, namespace)


class FakeRancherClient(rancher.RancherClient):
    """`RancherClient` with fake Kubernetes APIs and a recorded management API."""

    def __init__(
        self,
        session: session_mod.Session,
        custom_objects: FakeCustomObjectsApi | None = None,
        core: FakeCoreV1Api | None = None,
        responses: dict[tuple[str, str], dict] | None = None,
    ) -> None:
        super().__init__(host="https://rancher.test", token="token", session=session)
        self.__dict__["custom_objects"] = custom_objects or FakeCustomObjectsApi()
        self.__dict__["core"] = core or FakeCoreV1Api()
        self.responses = responses or {}
        self.requests: list[tuple[str, str, dict]] = []
        self.missing: set[str] = set()

    def _request(
        self, method: str, path: str, *, authenticated: bool = True, **kwargs: tp.Any
    ) -> dict:
        self.requests.append((method, path, kwargs.get("json") or {}))
        if method == "DELETE" and path in self.missing:
            raise rancher.RancherAPIError(status=404, message="not found")
        return self.responses.get((method, path), {})

    def with_session(self, session: session_mod.Session) -> "FakeRancherClient":
        client = FakeRancherClient(
            session=session,
            custom_objects=self.custom_objects,  # type: ignore[arg-type]
            core=self.core,  # type: ignore[arg-type]
            responses=self.responses,
        )
        client.requests = self.requests
        return client

    def close(self) -> None:
        pass
