import copy
from typing import Any, Callable, Optional, Union
import pytest
import host
from k8sClient import K8sClient, ResourceKind, Resource
from osaConfig import WaitConfig

FAST_WAITS = WaitConfig(
    interval=0.001,
    progress_every=0,
    default_timeout=0.02,
    operator_timeout=0.02,
    central_timeout=0.02,
    route_timeout=0.02,
    certificate_timeout=0.02,
    keycloak_timeout=0.02,
    securesign_timeout=0.02,
    datasciencecluster_timeout=0.02,
    datasciencecluster_interval=0.001,
)


def _merge(target: dict[str, Any], patch: dict[str, Any]) -> None:
    for k, v in patch.items():
        if v is None:
            target.pop(k, None)
        elif isinstance(v, dict) and isinstance(target.get(k), dict):
            _merge(target[k], v)
        else:
            target[k] = copy.deepcopy(v)


def _json_patch(target: dict[str, Any], ops: list[dict[str, Any]]) -> None:
    for op in ops:
        *parents, last = op["path"].strip("/").split("/")
        cur = target
        for p in parents:
            cur = cur.setdefault(p, {})
        if op["op"] == "remove":
            del cur[last]
        elif op["op"] in ("add", "replace"):
            cur[last] = copy.deepcopy(op["value"])
        else:
            raise ValueError(op["op"])


class FakeK8sClient(K8sClient):
    """In-memory stand-in for the cluster.

    Hooks registered with on_create run after an object is stored and play
    the part of the operator reconciling it.
    """

    def __init__(self) -> None:
        self.context = "fake"
        self.waits = FAST_WAITS
        self.objects: dict[tuple[str, Optional[str], str], Resource] = {}
        self.namespaces: set[str] = set()
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}
        self.crds: set[str] = set()
        self.deployments: dict[tuple[str, str], bool] = {}
        self.oc_calls: list[list[str]] = []
        self.oc_result = host.Result("", "", 0)
        self.patches: list[tuple[str, str, Any]] = []
        self.deleted: list[tuple[str, Optional[str], str]] = []
        self.hooks: dict[str, list[Callable[[Resource], None]]] = {}

    def _key(self, kind: ResourceKind, name: str, namespace: Optional[str]) -> tuple[str, Optional[str], str]:
        return kind.plural, namespace if kind.namespaced else None, name

    def on_create(self, kind: ResourceKind, hook: Callable[[Resource], None]) -> None:
        self.hooks.setdefault(kind.plural, []).append(hook)

    def add(self, kind: ResourceKind, obj: Resource) -> Resource:
        meta = obj.setdefault("metadata", {})
        obj.setdefault("apiVersion", kind.api_version)
        obj.setdefault("kind", kind.kind)
        self.objects[self._key(kind, meta["name"], meta.get("namespace"))] = obj
        return obj

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Optional[Resource]:
        obj = self.objects.get(self._key(kind, name, namespace))
        return copy.deepcopy(obj) if obj is not None else None

    def list_resources(self, kind: ResourceKind, namespace: Optional[str] = None, label_selector: Optional[str] = None) -> list[Resource]:
        out = []
        for (plural, ns, _), obj in self.objects.items():
            if plural != kind.plural or (namespace is not None and kind.namespaced and ns != namespace):
                continue
            if label_selector:
                labels = obj["metadata"].get("labels", {})
                k, _, v = label_selector.partition("=")
                if labels.get(k) != v:
                    continue
            out.append(copy.deepcopy(obj))
        return out

    def create(self, kind: ResourceKind, body: Resource) -> Resource:
        obj = self.add(kind, copy.deepcopy(body))
        for hook in self.hooks.get(kind.plural, []):
            hook(obj)
        return copy.deepcopy(obj)

    def patch(self, kind: ResourceKind, name: str, body: Union[Resource, list[Resource]], namespace: Optional[str] = None) -> Resource:
        obj = self.objects[self._key(kind, name, namespace)]
        self.patches.append((kind.plural, name, copy.deepcopy(body)))
        if isinstance(body, list):
            _json_patch(obj, body)
        else:
            _merge(obj, body)
        return copy.deepcopy(obj)

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> bool:
        key = self._key(kind, name, namespace)
        self.deleted.append(key)
        return self.objects.pop(key, None) is not None

    def clear_finalizers(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> None:
        if self._key(kind, name, namespace) in self.objects:
            self.patch(kind, name, {"metadata": {"finalizers": None}}, namespace)

    def crd_exists(self, name: str) -> bool:
        return name in self.crds

    def namespace_exists(self, name: str) -> bool:
        return name in self.namespaces

    def ensure_namespace(self, name: str, labels: Optional[dict[str, str]] = None) -> bool:
        created = name not in self.namespaces
        self.namespaces.add(name)
        return created

    def delete_namespace(self, name: str) -> bool:
        if name not in self.namespaces:
            return False
        self.namespaces.discard(name)
        return True

    def clear_namespace_finalizers(self, name: str) -> None:
        pass

    def get_secret(self, name: str, namespace: str) -> Optional[dict[str, str]]:
        data = self.secrets.get((namespace, name))
        return dict(data) if data is not None else None

    def create_secret(self, name: str, namespace: str, data: dict[str, str], secret_type: str = "Opaque", replace: bool = False) -> None:
        self.secrets[(namespace, name)] = dict(data)

    def delete_secret(self, name: str, namespace: str) -> bool:
        return self.secrets.pop((namespace, name), None) is not None

    def delete_pods(self, namespace: str, label_selector: str) -> None:
        pass

    def deployment_available(self, name: str, namespace: str) -> Optional[bool]:
        return self.deployments.get((namespace, name))

    def oc(self, cmd: Union[str, list[str]], must_succeed: bool = False, stdin: Optional[str] = None) -> host.Result:
        self.oc_calls.append(cmd.split() if isinstance(cmd, str) else list(cmd))
        return self.oc_result


@pytest.fixture
def k8s() -> FakeK8sClient:
    return FakeK8sClient()
