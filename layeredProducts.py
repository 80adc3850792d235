from typing import Any, Iterable
from common import SetupError
from logger import logger
from roxClient import RoxClient

log = logger.tagged("LAYERED-PRODUCTS")

# Central ships these in the rule; used when a fresh Central has no rule yet
DEFAULT_LAYERED_PRODUCT_NAMESPACES = (
    "aap", "ack-system", "aws-load-balancer-operator", "cert-manager-operator",
    "cert-utils-operator", "costmanagement-metrics-operator", "external-dns-operator", "metallb-system",
    "mtr", "multicluster-engine", "multicluster-global-hub", "node-observability-operator",
    "open-cluster-management", "openshift-adp", "openshift-apiserver-operator", "openshift-authentication",
    "openshift-authentication-operator", "openshift-builds", "openshift-cloud-controller-manager", "openshift-cloud-controller-manager-operator",
    "openshift-cloud-credential-operator", "openshift-cloud-network-config-controller", "openshift-cluster-csi-drivers", "openshift-cluster-machine-approver",
    "openshift-cluster-node-tuning-operator", "openshift-cluster-observability-operator", "openshift-cluster-samples-operator", "openshift-cluster-storage-operator",
    "openshift-cluster-version", "openshift-cnv", "openshift-compliance", "openshift-config",
    "openshift-config-managed", "openshift-config-operator", "openshift-console", "openshift-console-operator",
    "openshift-console-user-settings", "openshift-controller-manager", "openshift-controller-manager-operator", "openshift-dbaas-operator",
    "openshift-distributed-tracing", "openshift-dns", "openshift-dns-operator", "openshift-dpu-network-operator",
    "openshift-dr-system", "openshift-etcd", "openshift-etcd-operator", "openshift-file-integrity",
    "openshift-gitops-operator", "openshift-host-network", "openshift-image-registry", "openshift-infra",
    "openshift-ingress", "openshift-ingress-canary", "openshift-ingress-node-firewall", "openshift-ingress-operator",
    "openshift-insights", "openshift-keda", "openshift-kmm", "openshift-kmm-hub",
    "openshift-kni-infra", "openshift-kube-apiserver", "openshift-kube-apiserver-operator", "openshift-kube-controller-manager",
    "openshift-kube-controller-manager-operator", "openshift-kube-scheduler", "openshift-kube-scheduler-operator", "openshift-kube-storage-version-migrator",
    "openshift-kube-storage-version-migrator-operator", "openshift-lifecycle-agent", "openshift-local-storage", "openshift-logging",
    "openshift-machine-api", "openshift-machine-config-operator", "openshift-marketplace", "openshift-migration",
    "openshift-monitoring", "openshift-mta", "openshift-mtv", "openshift-multus",
    "openshift-netobserv-operator", "openshift-network-diagnostics", "openshift-network-node-identity", "openshift-network-operator",
    "openshift-nfd", "openshift-nmstate", "openshift-node", "openshift-nutanix-infra",
    "openshift-oauth-apiserver", "openshift-openstack-infra", "openshift-opentelemetry-operator", "openshift-operator-lifecycle-manager",
    "openshift-operators", "openshift-operators-redhat", "openshift-ovirt-infra", "openshift-ovn-kubernetes",
    "openshift-ptp", "openshift-route-controller-manager", "openshift-sandboxed-containers-operator", "openshift-security-profiles",
    "openshift-serverless", "openshift-serverless-logic", "openshift-service-ca", "openshift-service-ca-operator",
    "openshift-sriov-network-operator", "openshift-storage", "openshift-tempo-operator", "openshift-update-service",
    "openshift-user-workload-monitoring", "openshift-vertical-pod-autoscaler", "openshift-vsphere-infra", "openshift-windows-machine-config-operator",
    "openshift-workload-availability", "redhat-ods-operator", "rhacs-operator", "rhdh-operator",
    "service-telemetry", "stackrox", "submariner-operator", "tssc-acs",
    "openshift-devspaces",
)
DEFAULT_SYSTEM_RULE = {"name": "system rule", "namespaceRule": {"regex": "^openshift$|^openshift-apiserver$|^openshift-operators$|^kube-.*"}}


def namespace_alternative(namespace: str) -> str:
    return f"^{namespace}$"


def has_namespace(regex: str, namespace: str) -> bool:
    return namespace_alternative(namespace) in regex


def append_namespaces(regex: str, namespaces: Iterable[str]) -> tuple[str, int]:
    """Append '^ns$' for every namespace the regex does not already list.

    Returns the new regex and how many namespaces were added. Applying the
    result again adds nothing.
    """
    added = 0
    for ns in namespaces:
        if has_namespace(regex, ns):
            continue
        regex = f"{regex}|{namespace_alternative(ns)}" if regex else namespace_alternative(ns)
        added += 1
    return regex, added


def _rules(document: dict[str, Any]) -> list[dict[str, Any]]:
    return list((document.get("config") or {}).get("platformComponentConfig", {}).get("rules") or [])


def _find_rule(document: dict[str, Any], rule_name: str) -> dict[str, Any]:
    for rule in _rules(document):
        if rule.get("name") == rule_name:
            return dict(rule)
    raise SetupError(f"Could not find '{rule_name}' rule in current configuration")


def rule_regex(document: dict[str, Any], rule_name: str) -> str:
    return str(_find_rule(document, rule_name).get("namespaceRule", {}).get("regex") or "")


def has_rule(document: dict[str, Any], rule_name: str) -> bool:
    """True when the rule exists with a non-empty regex."""
    return any(r.get("name") == rule_name and (r.get("namespaceRule") or {}).get("regex") for r in _rules(document))


def with_default_rule(document: dict[str, Any], rule_name: str) -> dict[str, Any]:
    """Return document with rule_name set to the default layered products regex.

    The rest of the configuration is kept. An empty rule list also gets the
    default system rule.
    """
    regex = "|".join(namespace_alternative(ns) for ns in DEFAULT_LAYERED_PRODUCT_NAMESPACES)
    rules = [r for r in _rules(document) if r.get("name") != rule_name]
    if not rules:
        rules.append(dict(DEFAULT_SYSTEM_RULE))
    rules.insert(0, {"name": rule_name, "namespaceRule": {"regex": regex}})
    config = dict(document.get("config") or {})
    platform = dict(config.get("platformComponentConfig") or {}, rules=rules)
    config["platformComponentConfig"] = platform
    return dict(document, config=config)


def with_rule_regex(document: dict[str, Any], rule_name: str, regex: str) -> dict[str, Any]:
    rules = []
    for rule in document["config"]["platformComponentConfig"]["rules"]:
        if rule.get("name") == rule_name:
            rule = dict(rule)
            rule["namespaceRule"] = dict(rule.get("namespaceRule") or {}, regex=regex)
        rules.append(rule)
    platform = dict(document["config"]["platformComponentConfig"], rules=rules)
    config = dict(document["config"], platformComponentConfig=platform)
    return dict(document, config=config)


def _initialize_rule(rox: RoxClient, document: dict[str, Any], rule_name: str) -> dict[str, Any]:
    log.info(f"No '{rule_name}' rule found, initializing it with the default namespaces...")
    initial = with_default_rule(document, rule_name)
    rox.put_config(initial)
    created = rox.get_config()
    if has_rule(created, rule_name):
        return created
    log.warning(f"Central did not return the '{rule_name}' rule after initializing it, continuing with the submitted configuration")
    return initial


def add_layered_product_namespaces(rox: RoxClient, namespaces: list[str], rule_name: str = "red hat layered products") -> int:
    log.info("Retrieving current RHACS configuration...")
    document = rox.get_config()
    if not has_rule(document, rule_name):
        document = _initialize_rule(rox, document, rule_name)
    current = rule_regex(document, rule_name)
    log.info(f"Current layered products regex found (length: {len(current)} chars)")

    for ns in namespaces:
        log.info(f"  - {ns}: {'already configured' if has_namespace(current, ns) else 'needs to be added'}")

    new_regex, added = append_namespaces(current, namespaces)
    if added == 0:
        log.info("All specified namespaces are already configured in the layered products rule, no changes needed")
        return 0

    log.info(f"Updating RHACS configuration to add {added} namespace(s)")
    rox.put_config(with_rule_regex(document, rule_name, new_regex))

    verified = rule_regex(rox.get_config(), rule_name)
    missing = [ns for ns in namespaces if not has_namespace(verified, ns)]
    if missing:
        log.warning(f"Namespaces missing from the verified configuration: {', '.join(missing)}")
    else:
        log.info(f"Verified {len(namespaces)} namespace(s) in the '{rule_name}' rule")
    return added
