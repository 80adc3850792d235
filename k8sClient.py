import os
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union
import kubernetes
import yaml
from kubernetes.client.exceptions import ApiException
import host
from common import PrerequisiteError, b64decode_str, b64encode_str
from logger import logger
from poller import FailurePolicy, WaitResult, wait_for
from osaConfig import WaitConfig


@dataclass(frozen=True)
class ResourceKind:
    kind: str
    group: str
    version: str
    plural: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def __str__(self) -> str:
        return f"{self.plural}.{self.group}"


CENTRAL = ResourceKind("Central", "platform.stackrox.io", "v1alpha1", "centrals")
SECURED_CLUSTER = ResourceKind("SecuredCluster", "platform.stackrox.io", "v1alpha1", "securedclusters")
SUBSCRIPTION = ResourceKind("Subscription", "operators.coreos.com", "v1alpha1", "subscriptions")
CSV = ResourceKind("ClusterServiceVersion", "operators.coreos.com", "v1alpha1", "clusterserviceversions")
INSTALL_PLAN = ResourceKind("InstallPlan", "operators.coreos.com", "v1alpha1", "installplans")
OPERATOR_GROUP = ResourceKind("OperatorGroup", "operators.coreos.com", "v1", "operatorgroups")
PACKAGE_MANIFEST = ResourceKind("PackageManifest", "packages.operators.coreos.com", "v1", "packagemanifests")
ROUTE = ResourceKind("Route", "route.openshift.io", "v1", "routes")
CERTIFICATE = ResourceKind("Certificate", "cert-manager.io", "v1", "certificates")
CERTIFICATE_REQUEST = ResourceKind("CertificateRequest", "cert-manager.io", "v1", "certificaterequests")
CLUSTER_ISSUER = ResourceKind("ClusterIssuer", "cert-manager.io", "v1", "clusterissuers", namespaced=False)
ACME_ORDER = ResourceKind("Order", "acme.cert-manager.io", "v1", "orders")
KEYCLOAK = ResourceKind("Keycloak", "keycloak.org", "v1alpha1", "keycloaks")
KEYCLOAK_REALM = ResourceKind("KeycloakRealm", "keycloak.org", "v1alpha1", "keycloakrealms")
KEYCLOAK_USER = ResourceKind("KeycloakUser", "keycloak.org", "v1alpha1", "keycloakusers")
KEYCLOAK_CLIENT = ResourceKind("KeycloakClient", "keycloak.org", "v1alpha1", "keycloakclients")
SECURESIGN = ResourceKind("Securesign", "rhtas.redhat.com", "v1alpha1", "securesigns")
DATA_SCIENCE_CLUSTER = ResourceKind("DataScienceCluster", "datasciencecluster.opendatahub.io", "v1", "datascienceclusters", namespaced=False)
PROFILE_BUNDLE = ResourceKind("ProfileBundle", "compliance.openshift.io", "v1alpha1", "profilebundles")
DNS_CONFIG = ResourceKind("DNS", "config.openshift.io", "v1", "dnses", namespaced=False)
INGRESS_CONFIG = ResourceKind("Ingress", "config.openshift.io", "v1", "ingresses", namespaced=False)
AUTHENTICATION_CONFIG = ResourceKind("Authentication", "config.openshift.io", "v1", "authentications", namespaced=False)
OAUTH_CLIENT = ResourceKind("OAuthClient", "oauth.openshift.io", "v1", "oauthclients", namespaced=False)

Resource = dict[str, Any]


def lookup(obj: Any, path: str) -> Any:
    """Follow a dotted path ('status.tuf.url', 'spec.channels.0.name') into obj.

    Missing keys, out of range indices and None along the way give None.
    """
    cur = obj
    for part in path.split("."):
        if cur is None:
            return None
        if isinstance(cur, list):
            try:
                cur = cur[int(part)]
            except (ValueError, IndexError):
                return None
        elif isinstance(cur, dict):
            cur = cur.get(part)
        else:
            return None
    return cur


def get_condition(obj: Optional[Resource], cond_type: str) -> Optional[Resource]:
    for cond in lookup(obj, "status.conditions") or []:
        if cond.get("type") == cond_type:
            return dict(cond)
    return None


def condition_status(obj: Optional[Resource], cond_type: str) -> Optional[str]:
    cond = get_condition(obj, cond_type)
    return None if cond is None else str(cond.get("status"))


def false_conditions(obj: Optional[Resource]) -> list[Resource]:
    return [c for c in lookup(obj, "status.conditions") or [] if str(c.get("status")) == "False"]


def kubeconfig_path(kubeconfig: Optional[str] = None) -> str:
    if kubeconfig:
        return os.path.expanduser(kubeconfig)
    env = os.environ.get("KUBECONFIG")
    if env:
        return env.split(os.pathsep)[0]
    return os.path.join(os.path.expanduser("~"), ".kube/config")


class K8sClient:
    """One cluster, addressed through a kubeconfig file and an optional context.

    Custom resources go through CustomObjectsApi keyed by ResourceKind. The
    oc binary is only used for recursive applies of arbitrary manifest trees.
    """

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        *,
        lh: host.LocalHost = host.LocalHost(),
        oc_path: str = "oc",
        waits: WaitConfig = WaitConfig(),
    ):
        self._kc = kubeconfig_path(kubeconfig)
        if not os.path.exists(self._kc):
            raise PrerequisiteError(f"kubeconfig {self._kc} not found, log in with 'oc login' first")
        with open(self._kc) as f:
            c = yaml.safe_load(f)
        self.context = context or c.get("current-context")
        self._api_client = kubernetes.config.new_client_from_config_dict(c, context=context)
        self.core = kubernetes.client.CoreV1Api(self._api_client)
        self.custom = kubernetes.client.CustomObjectsApi(self._api_client)
        self.extensions = kubernetes.client.ApiextensionsV1Api(self._api_client)
        self.apps = kubernetes.client.AppsV1Api(self._api_client)
        self._host = lh
        self._oc_path = oc_path
        self.waits = waits

    def __str__(self) -> str:
        return f"K8sClient({self.context})"

    def oc(self, cmd: Union[str, list[str]], must_succeed: bool = False, stdin: Optional[str] = None) -> host.Result:
        args = [self._oc_path, "--kubeconfig", self._kc]
        if self.context:
            args += ["--context", self.context]
        args += cmd.split() if isinstance(cmd, str) else cmd
        if must_succeed:
            return self._host.run_or_die(args, stdin=stdin)
        return self._host.run(args, stdin=stdin)

    def apply_manifest(self, manifest: str, namespace: Optional[str] = None) -> host.Result:
        ns_args = ["-n", namespace] if namespace else []
        return self.oc(["apply", *ns_args, "-f", "-"], must_succeed=True, stdin=manifest)

    # Custom resources

    def get(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> Optional[Resource]:
        try:
            if kind.namespaced:
                obj = self.custom.get_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name)
            else:
                obj = self.custom.get_cluster_custom_object(kind.group, kind.version, kind.plural, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return dict(obj)

    def exists(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> bool:
        return self.get(kind, name, namespace) is not None

    def list_resources(self, kind: ResourceKind, namespace: Optional[str] = None, label_selector: Optional[str] = None) -> list[Resource]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        try:
            if kind.namespaced and namespace is not None:
                ret = self.custom.list_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, **kwargs)
            else:
                ret = self.custom.list_cluster_custom_object(kind.group, kind.version, kind.plural, **kwargs)
        except ApiException as e:
            if e.status == 404:
                return []
            raise
        return list(ret.get("items", []))

    def create(self, kind: ResourceKind, body: Resource) -> Resource:
        body.setdefault("apiVersion", kind.api_version)
        body.setdefault("kind", kind.kind)
        namespace = body.get("metadata", {}).get("namespace")
        if kind.namespaced:
            return dict(self.custom.create_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, body))
        return dict(self.custom.create_cluster_custom_object(kind.group, kind.version, kind.plural, body))

    def patch(self, kind: ResourceKind, name: str, body: Union[Resource, list[Resource]], namespace: Optional[str] = None) -> Resource:
        """A list body is sent as a JSON patch, a dict as a JSON merge patch."""
        content_type = "application/json-patch+json" if isinstance(body, list) else "application/merge-patch+json"
        if kind.namespaced:
            ret = self.custom.patch_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name, body, _content_type=content_type)
        else:
            ret = self.custom.patch_cluster_custom_object(kind.group, kind.version, kind.plural, name, body, _content_type=content_type)
        return dict(ret)

    def apply(self, kind: ResourceKind, body: Resource) -> tuple[Resource, bool]:
        """Create body if absent, otherwise merge its spec into the live object."""
        name = body["metadata"]["name"]
        namespace = body["metadata"].get("namespace")
        existing = self.get(kind, name, namespace)
        if existing is None:
            logger.info(f"Creating {kind.kind} {name}" + (f" in {namespace}" if namespace else ""))
            return self.create(kind, body), True

        logger.info(f"{kind.kind} {name} already exists, updating")
        update = {k: v for k, v in body.items() if k not in ("apiVersion", "kind", "metadata", "status")}
        labels = body["metadata"].get("labels")
        if labels:
            update["metadata"] = {"labels": labels}
        if not update:
            return existing, False
        return self.patch(kind, name, update, namespace), False

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> bool:
        try:
            if kind.namespaced:
                self.custom.delete_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name)
            else:
                self.custom.delete_cluster_custom_object(kind.group, kind.version, kind.plural, name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        logger.info(f"Deleted {kind.kind} {name}")
        return True

    def clear_finalizers(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> None:
        try:
            self.patch(kind, name, {"metadata": {"finalizers": None}}, namespace)
        except ApiException as e:
            if e.status != 404:
                raise

    def field(self, kind: ResourceKind, name: str, namespace: Optional[str], path: str) -> Any:
        return lookup(self.get(kind, name, namespace), path)

    def condition(self, kind: ResourceKind, name: str, namespace: Optional[str], cond_type: str) -> Optional[str]:
        return condition_status(self.get(kind, name, namespace), cond_type)

    def dump(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> str:
        obj = self.get(kind, name, namespace)
        if obj is None:
            return f"{kind.kind} {name} not found"
        return yaml.safe_dump(obj, default_flow_style=False)

    def crd_exists(self, name: str) -> bool:
        try:
            self.extensions.read_custom_resource_definition(name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    # Polling on top of the accessors above

    def wait_for_field(
        self,
        kind: ResourceKind,
        name: str,
        namespace: Optional[str],
        path: str,
        predicate: Callable[[Any], bool],
        *,
        description: Optional[str] = None,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
        progress_every: Optional[float] = None,
        policy: FailurePolicy = FailurePolicy.FAIL,
        diagnostics: Optional[Callable[[], None]] = None,
    ) -> WaitResult[Any]:
        if description is None:
            description = f"{kind.kind} {name} .{path}"
        return wait_for(
            description,
            lambda: self.field(kind, name, namespace, path),
            predicate,
            timeout=timeout if timeout is not None else self.waits.default_timeout,
            interval=interval if interval is not None else self.waits.interval,
            progress_every=progress_every if progress_every is not None else self.waits.progress_every,
            policy=policy,
            diagnostics=diagnostics or (lambda: logger.info(self.dump(kind, name, namespace))),
        )

    def wait_for_condition(
        self,
        kind: ResourceKind,
        name: str,
        namespace: Optional[str],
        cond_type: str,
        status: str = "True",
        *,
        timeout: Optional[float] = None,
        policy: FailurePolicy = FailurePolicy.FAIL,
        diagnostics: Optional[Callable[[], None]] = None,
    ) -> WaitResult[Optional[str]]:
        return wait_for(
            f"{kind.kind} {name} condition {cond_type}={status}",
            lambda: self.condition(kind, name, namespace, cond_type),
            lambda s: s == status,
            timeout=timeout if timeout is not None else self.waits.default_timeout,
            interval=self.waits.interval,
            progress_every=self.waits.progress_every,
            policy=policy,
            diagnostics=diagnostics or (lambda: logger.info(self.dump(kind, name, namespace))),
        )

    # Core resources

    def namespace_exists(self, name: str) -> bool:
        try:
            self.core.read_namespace(name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def ensure_namespace(self, name: str, labels: Optional[dict[str, str]] = None) -> bool:
        if self.namespace_exists(name):
            if labels:
                self.core.patch_namespace(name, {"metadata": {"labels": labels}})
            return False
        logger.info(f"Creating namespace {name}")
        body = kubernetes.client.V1Namespace(metadata=kubernetes.client.V1ObjectMeta(name=name, labels=labels))
        self.core.create_namespace(body)
        return True

    def delete_namespace(self, name: str) -> bool:
        try:
            self.core.delete_namespace(name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        logger.info(f"Deleting namespace {name}")
        return True

    def clear_namespace_finalizers(self, name: str) -> None:
        try:
            ns = self.core.read_namespace(name)
        except ApiException as e:
            if e.status == 404:
                return
            raise
        if ns.spec and ns.spec.finalizers:
            ns.spec.finalizers = []
            self.core.replace_namespace_finalize(name, ns)

    def get_secret(self, name: str, namespace: str) -> Optional[dict[str, str]]:
        """Decoded secret data, or None if the secret does not exist."""
        try:
            secret = self.core.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return {k: b64decode_str(v) for k, v in (secret.data or {}).items()}

    def secret_exists(self, name: str, namespace: str) -> bool:
        return self.get_secret(name, namespace) is not None

    def create_secret(self, name: str, namespace: str, data: dict[str, str], secret_type: str = "Opaque", replace: bool = False) -> None:
        body = kubernetes.client.V1Secret(
            metadata=kubernetes.client.V1ObjectMeta(name=name, namespace=namespace),
            type=secret_type,
            data={k: b64encode_str(v) for k, v in data.items()},
        )
        if replace:
            self.delete_secret(name, namespace)
        self.core.create_namespaced_secret(namespace, body)
        logger.info(f"Created secret {name} in {namespace}")

    def delete_secret(self, name: str, namespace: str) -> bool:
        try:
            self.core.delete_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def route_host(self, name: str, namespace: str) -> Optional[str]:
        host_name = self.field(ROUTE, name, namespace, "spec.host")
        return str(host_name) if host_name else None

    def delete_pods(self, namespace: str, label_selector: str) -> None:
        self.core.delete_collection_namespaced_pod(namespace, label_selector=label_selector)

    def deployment_exists(self, name: str, namespace: str) -> bool:
        return self.deployment_available(name, namespace) is not None

    def deployment_available(self, name: str, namespace: str) -> Optional[bool]:
        """None when the deployment does not exist."""
        try:
            dep = self.apps.read_namespaced_deployment(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        for cond in (dep.status.conditions if dep.status else None) or []:
            if cond.type == "Available":
                return str(cond.status) == "True"
        return False
