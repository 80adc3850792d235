import os
from typing import Any, Literal, Optional
from pydantic import field_validator
import configLoader
import timer
from configLoader import StrictBaseModel

DEFAULT_CONFIG_PATH = os.path.join(os.path.expanduser("~"), ".config/osa/config.yaml")

OidcProvider = Literal["keycloak", "openshift"]


class WaitConfig(StrictBaseModel):
    interval: float = 5
    progress_every: float = 30
    default_timeout: float = 300
    operator_timeout: float = 600
    central_timeout: float = 900
    route_timeout: float = 300
    certificate_timeout: float = 300
    keycloak_timeout: float = 900
    securesign_timeout: float = 600
    datasciencecluster_timeout: float = 900
    datasciencecluster_interval: float = 10

    # Durations may be written as seconds or as "15m", "1m30s"
    @field_validator("*", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return timer.to_seconds(value)
            except ValueError:
                return value
        return value


class AcsConfig(StrictBaseModel):
    namespace: str = "rhacs-operator"
    operator_package: str = "rhacs-operator"
    operator_group: str = "rhacs-operator-group"
    channel: str = "stable"
    source: str = "redhat-operators"
    central_name: str = "rhacs-central-services"
    secured_cluster_name: str = "rhacs-secured-cluster-services"
    cluster_name: str = "local-cluster"
    portal_username: str = "admin"
    api_token_name: str = "acs-setup-script-token"
    api_token_role: str = "Admin"
    passthrough_host_prefix: str = "central-passthrough"
    reencrypt_host_prefix: str = "central-stackrox"
    roxctl_version: str = "4.9.0"
    roxctl_path: str = "/usr/local/bin/roxctl"
    init_bundle_dir: str = "init-bundles"
    tls_issuer: str = "letsencrypt-production-aws"
    tls_certificate_name: str = "rhacs-central-tls-cert"
    tls_secret_name: str = "rhacs-central-tls-secret"
    central_tls_secret: str = "central-default-tls-cert"
    cleanup_context: str = "aws-us"


class ComplianceConfig(StrictBaseModel):
    namespace: str = "openshift-compliance"
    operator_package: str = "compliance-operator"
    operator_group: str = "openshift-compliance"
    channel: str = "stable"
    contexts: list[str] = []
    scan_name: str = "acs-catch-all"
    description: str = "Daily compliance scan for all profiles"
    hour: int = 12
    minute: int = 0
    profiles: list[str] = [
        "ocp4-cis",
        "ocp4-cis-node",
        "ocp4-moderate",
        "ocp4-moderate-node",
        "ocp4-e8",
        "ocp4-high",
        "ocp4-high-node",
        "ocp4-nerc-cip",
        "ocp4-nerc-cip-node",
        "ocp4-pci-dss",
        "ocp4-pci-dss-node",
        "ocp4-stig",
        "ocp4-bsi",
        "ocp4-pci-dss-4-0",
    ]


class LayeredProductsConfig(StrictBaseModel):
    rule_name: str = "red hat layered products"
    namespaces: list[str] = [
        "cert-manager",
        "open-cluster-management-hub",
        "open-cluster-management-agent",
        "open-cluster-management-agent-addon",
        "openshift-gitops",
        "quay",
        "openshift-pipelines",
        "openshift-operator-controller",
        "openshift-catalogd",
        "openshift-frr-k8s",
        "openshift-cluster-olm-operator",
    ]


class KeycloakUserConfig(StrictBaseModel):
    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    password: Optional[str] = None
    realm_roles: list[str] = []


class KeycloakConfig(StrictBaseModel):
    namespace: str = "rhsso"
    operator_package: str = "rhsso-operator"
    operator_group: str = "rhsso-operator-group"
    channel: str = "stable"
    instance_name: str = "rhsso-instance"
    realm: str = "openshift"
    client_id: str = "trusted-artifact-signer"
    redirect_uris: list[str] = ["http://localhost/auth/callback", "urn:ietf:wg:oauth:2.0:oob"]
    users: list[KeycloakUserConfig] = [
        KeycloakUserConfig(username="admin", email="admin@demo.redhat.com", first_name="Admin", last_name="User", realm_roles=["offline_access"]),
        KeycloakUserConfig(username="jdoe", email="jdoe@redhat.com", first_name="Jane", last_name="Doe", password="secure"),
    ]


class RhtasConfig(StrictBaseModel):
    oidc_provider: OidcProvider = "keycloak"
    namespace: str = "trusted-artifact-signer"
    operator_namespace: str = "openshift-operators"
    subscription_name: str = "trusted-artifact-signer"
    operator_package: str = "rhtas-operator"
    channel: str = "stable"
    source: str = "redhat-operators"
    csv_display_name: str = "Trusted Artifact Signer Operator"
    securesign_name: str = "securesign"
    organization_name: str = "Red Hat"
    organization_email: str = "admin@demo.redhat.com"
    common_name: str = "fulcio.hostname"
    oauth_client_id: str = "trusted-artifact-signer"
    oauth_client_secret: str = "trusted-artifact-signer-secret"


class OpenShiftAiConfig(StrictBaseModel):
    namespace: str = "redhat-ods-operator"
    operator_package: str = "rhods-operator"
    operator_group: str = "redhat-ods-operatorgroup"
    preferred_channels: list[str] = ["stable", "fast"]
    channel: str = "stable"
    datasciencecluster_name: str = "default-dsc"
    workbench_namespace: str = "rhods-notebooks"
    managed_components: list[str] = ["dashboard", "workbenches"]
    removed_components: list[str] = [
        "codeflare",
        "datasciencepipelines",
        "kserve",
        "kueue",
        "modelmeshserving",
        "ray",
        "trainingoperator",
        "trustyai",
    ]


class DemoAppsConfig(StrictBaseModel):
    repo_url: str = "https://github.com/mfosterrox/demo-applications.git"
    branch: Optional[str] = None
    checkout_dir: str = os.path.join(os.path.expanduser("~"), "demo-applications")
    manifest_dirs: list[str] = ["k8s-deployment-manifests"]
    contexts: list[str] = ["aws-us", "local-cluster"]
    label: str = "demo=roadshow"


class OsaConfig(StrictBaseModel):
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    contexts: list[str] = ["local-cluster"]
    state_file_path: str = os.path.join(os.path.expanduser("~"), ".config/osa/state")
    insecure_skip_tls_verify: bool = True
    oc_path: str = "oc"
    wait: WaitConfig = WaitConfig()
    acs: AcsConfig = AcsConfig()
    compliance: ComplianceConfig = ComplianceConfig()
    layered_products: LayeredProductsConfig = LayeredProductsConfig()
    keycloak: KeycloakConfig = KeycloakConfig()
    rhtas: RhtasConfig = RhtasConfig()
    openshift_ai: OpenShiftAiConfig = OpenShiftAiConfig()
    demo_apps: DemoAppsConfig = DemoAppsConfig()


def load_config(path: Optional[str]) -> OsaConfig:
    if path is None:
        if not os.path.exists(DEFAULT_CONFIG_PATH):
            return OsaConfig()
        path = DEFAULT_CONFIG_PATH
    return configLoader.load(path, OsaConfig)
