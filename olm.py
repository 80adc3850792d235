from dataclasses import dataclass
from typing import Optional
import templates
from k8sClient import K8sClient, CSV, INSTALL_PLAN, OPERATOR_GROUP, PACKAGE_MANIFEST, SUBSCRIPTION, Resource, lookup
from logger import logger
from poller import FailurePolicy, wait_for

MARKETPLACE_NAMESPACE = "openshift-marketplace"
GLOBAL_OPERATORS_NAMESPACE = "openshift-operators"

log = logger.tagged("OLM")


@dataclass(frozen=True)
class OperatorSpec:
    package: str
    namespace: str
    channel: str = "stable"
    source: str = "redhat-operators"
    source_namespace: str = MARKETPLACE_NAMESPACE
    subscription_name: Optional[str] = None
    operator_group: Optional[str] = None
    # None means AllNamespaces, an empty OperatorGroup spec
    target_namespaces: Optional[tuple[str, ...]] = None
    preferred_channels: tuple[str, ...] = ()
    starting_csv: Optional[str] = None
    install_plan_approval: str = "Automatic"
    csv_display_name: Optional[str] = None

    @property
    def subscription(self) -> str:
        return self.subscription_name or self.package

    @property
    def needs_operator_group(self) -> bool:
        # openshift-operators ships its own global OperatorGroup
        return self.namespace != GLOBAL_OPERATORS_NAMESPACE


def choose_channel(available: list[str], default_channel: Optional[str], wanted: str, preferred: tuple[str, ...] = ()) -> str:
    """Pick the first of wanted, then preferred, that the catalog offers.

    Falls back to the catalog's default channel, and to wanted when the
    catalog lists nothing at all.
    """
    for candidate in (wanted, *preferred):
        if candidate in available:
            return candidate
    if default_channel:
        return default_channel
    if available:
        return available[0]
    return wanted


class OperatorInstaller:
    def __init__(self, client: K8sClient):
        self.client = client

    def select_channel(self, spec: OperatorSpec) -> str:
        pm = self.client.get(PACKAGE_MANIFEST, spec.package, spec.source_namespace)
        if pm is None:
            log.warning(f"Package manifest {spec.package} not found in {spec.source_namespace}, using channel {spec.channel}")
            return spec.channel
        available = [c["name"] for c in lookup(pm, "status.channels") or []]
        channel = choose_channel(available, lookup(pm, "status.defaultChannel"), spec.channel, spec.preferred_channels)
        if channel != spec.channel:
            log.info(f"Channel {spec.channel} not offered for {spec.package} (available: {', '.join(available)}), using {channel}")
        return channel

    def ensure_operator_group(self, spec: OperatorSpec) -> None:
        if not spec.needs_operator_group:
            return
        existing = self.client.list_resources(OPERATOR_GROUP, spec.namespace)
        wanted = list(spec.target_namespaces) if spec.target_namespaces is not None else None
        if existing:
            og = existing[0]
            name = og["metadata"]["name"]
            current = lookup(og, "spec.targetNamespaces")
            if spec.operator_group is not None and name == spec.operator_group and current != wanted:
                log.info(f"Updating target namespaces of OperatorGroup {name} to {wanted}")
                self.client.patch(OPERATOR_GROUP, name, {"spec": {"targetNamespaces": wanted}}, spec.namespace)
            else:
                log.info(f"Using existing OperatorGroup {name} in {spec.namespace}")
            return

        body = templates.render_resource(
            "operator-group.yaml.j2",
            name=spec.operator_group or f"{spec.package}-group",
            namespace=spec.namespace,
            target_namespaces=wanted,
        )
        self.client.create(OPERATOR_GROUP, body)

    def ensure_subscription(self, spec: OperatorSpec, channel: str) -> Resource:
        existing = self.client.get(SUBSCRIPTION, spec.subscription, spec.namespace)
        if existing is not None:
            if lookup(existing, "spec.channel") != channel:
                log.info(f"Switching Subscription {spec.subscription} to channel {channel}")
                return self.client.patch(SUBSCRIPTION, spec.subscription, {"spec": {"channel": channel}}, spec.namespace)
            log.info(f"Subscription {spec.subscription} already exists on channel {channel}")
            return existing

        body = templates.render_resource(
            "subscription.yaml.j2",
            name=spec.subscription,
            namespace=spec.namespace,
            channel=channel,
            package=spec.package,
            source=spec.source,
            source_namespace=spec.source_namespace,
            starting_csv=spec.starting_csv,
            install_plan_approval=spec.install_plan_approval,
        )
        return self.client.create(SUBSCRIPTION, body)

    def find_csv(self, spec: OperatorSpec) -> Optional[str]:
        sub = self.client.get(SUBSCRIPTION, spec.subscription, spec.namespace)
        name = lookup(sub, "status.installedCSV") or lookup(sub, "status.currentCSV")
        if name:
            return str(name)
        for csv in self.client.list_resources(CSV, spec.namespace):
            csv_name = csv["metadata"]["name"]
            if csv_name.startswith(f"{spec.package}.") or (spec.csv_display_name and lookup(csv, "spec.displayName") == spec.csv_display_name):
                return str(csv_name)
        return None

    def csv_phase(self, spec: OperatorSpec) -> Optional[str]:
        name = self.find_csv(spec)
        if name is None:
            return None
        phase = self.client.field(CSV, name, spec.namespace, "status.phase")
        return None if phase is None else str(phase)

    def installed(self, spec: OperatorSpec) -> bool:
        return self.csv_phase(spec) == "Succeeded"

    def diagnostics(self, spec: OperatorSpec) -> None:
        log.error(f"Subscription {spec.subscription}:\n{self.client.dump(SUBSCRIPTION, spec.subscription, spec.namespace)}")
        plan = self.client.field(SUBSCRIPTION, spec.subscription, spec.namespace, "status.installPlanRef.name")
        if plan:
            log.error(f"InstallPlan {plan}:\n{self.client.dump(INSTALL_PLAN, plan, spec.namespace)}")
        csv = self.find_csv(spec)
        if csv:
            log.error(f"ClusterServiceVersion {csv}:\n{self.client.dump(CSV, csv, spec.namespace)}")

    def install(self, spec: OperatorSpec, *, timeout: Optional[float] = None) -> str:
        """Install the operator described by spec and return the name of its CSV."""
        waits = self.client.waits
        if timeout is None:
            timeout = waits.operator_timeout

        if self.installed(spec):
            csv = self.find_csv(spec)
            assert csv is not None
            log.info(f"Operator {spec.package} already installed ({csv})")
            return csv

        log.info(f"Installing operator {spec.package} into {spec.namespace}")
        self.client.ensure_namespace(spec.namespace)
        self.ensure_operator_group(spec)
        channel = self.select_channel(spec)
        self.ensure_subscription(spec, channel)

        found = wait_for(
            f"CSV for {spec.package} to appear",
            lambda: self.find_csv(spec),
            timeout=timeout,
            interval=waits.interval,
            progress_every=waits.progress_every,
            diagnostics=lambda: self.diagnostics(spec),
            log=log,
        )
        csv_name = str(found.value)

        wait_for(
            f"CSV {csv_name} to reach phase Succeeded",
            lambda: self.client.field(CSV, csv_name, spec.namespace, "status.phase"),
            lambda phase: phase == "Succeeded",
            timeout=timeout,
            interval=waits.interval,
            progress_every=waits.progress_every,
            policy=FailurePolicy.FAIL,
            diagnostics=lambda: self.diagnostics(spec),
            log=log,
        )
        log.info(f"Operator {spec.package} installed ({csv_name})")
        return csv_name

    def uninstall(self, spec: OperatorSpec) -> None:
        csv = self.find_csv(spec)
        self.client.delete(SUBSCRIPTION, spec.subscription, spec.namespace)
        if csv:
            self.client.delete(CSV, csv, spec.namespace)
        if spec.operator_group and spec.needs_operator_group:
            self.client.delete(OPERATOR_GROUP, spec.operator_group, spec.namespace)
