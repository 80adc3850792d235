import argparse
from dataclasses import dataclass
from typing import Callable, Optional
import kubernetes
import requests
from kubernetes.client.exceptions import ApiException
import acsAccess
import acsCentral
import acsSecuredCluster
import certManager
import cleanup
import compliance
import demoApps
import host
import keycloak
import layeredProducts
import openshiftAi
import rhtas
import state_file
from common import PrerequisiteError, SetupError
from k8sClient import K8sClient
from logger import logger
from osaConfig import OsaConfig
from roxClient import RoxClient
from state_file import StateFile
from timer import StopWatch


class SetupContext:
    """Everything a step needs: configuration, session state and cluster access."""

    def __init__(self, cfg: OsaConfig, sf: StateFile, lh: host.LocalHost = host.LocalHost()):
        self.cfg = cfg
        self.sf = sf
        self.lh = lh
        self._clients: dict[Optional[str], K8sClient] = {}

    @property
    def verify(self) -> bool:
        return not self.cfg.insecure_skip_tls_verify

    def client(self, context: Optional[str] = None) -> K8sClient:
        context = context or self.cfg.context
        if context not in self._clients:
            try:
                self._clients[context] = K8sClient(self.cfg.kubeconfig, context, lh=self.lh, oc_path=self.cfg.oc_path, waits=self.cfg.wait)
            except kubernetes.config.ConfigException as e:
                raise PrerequisiteError(f"Cannot use kubeconfig context {context}: {e}") from e
        return self._clients[context]

    def rox(self) -> RoxClient:
        return acsAccess.rox_client(self.sf, verify=self.verify)


StepFn = Callable[[SetupContext, argparse.Namespace], None]

# Failures a step can end with; anything else is a bug and keeps its traceback
STEP_ERRORS = (SetupError, ApiException, requests.RequestException)


@dataclass(frozen=True)
class Step:
    name: str
    help: str
    run: StepFn
    # Failures of soft steps are logged and run-all carries on
    soft: bool = False


def _roxctl(ctx: SetupContext, args: argparse.Namespace) -> None:
    acsAccess.install_roxctl(ctx.cfg.acs, ctx.lh)


def _central_tls(ctx: SetupContext, args: argparse.Namespace) -> None:
    certManager.setup_central_tls(ctx.client(), ctx.cfg.acs)


def _acs_operator(ctx: SetupContext, args: argparse.Namespace) -> None:
    acsCentral.install_operator(ctx.client(), ctx.cfg.acs)


def _central(ctx: SetupContext, args: argparse.Namespace) -> None:
    acsCentral.install_central(ctx.client(), ctx.cfg.acs)


def _passthrough(ctx: SetupContext, args: argparse.Namespace) -> None:
    acsCentral.configure_passthrough(ctx.client(), ctx.cfg.acs)


def _central_routes(ctx: SetupContext, args: argparse.Namespace) -> None:
    acsCentral.configure_routes(ctx.client(), ctx.cfg.acs)


def _access(ctx: SetupContext, args: argparse.Namespace) -> None:
    acsAccess.setup_access(ctx.client(), ctx.cfg.acs, ctx.sf, force_token=getattr(args, "force_token", False), verify=ctx.verify)


def _secured_cluster(ctx: SetupContext, args: argparse.Namespace) -> None:
    acsSecuredCluster.install_secured_cluster(ctx.client(), ctx.rox(), ctx.cfg.acs)


def _layered_namespaces(ctx: SetupContext, args: argparse.Namespace) -> None:
    lp = ctx.cfg.layered_products
    layeredProducts.add_layered_product_namespaces(ctx.rox(), lp.namespaces, lp.rule_name)


def compliance_contexts(cfg: OsaConfig) -> list[Optional[str]]:
    if cfg.compliance.contexts:
        return list(cfg.compliance.contexts)
    return [cfg.context]


def _compliance(ctx: SetupContext, args: argparse.Namespace) -> None:
    for context in compliance_contexts(ctx.cfg):
        logger.info(f"Installing compliance operator in context {context or 'current'}")
        compliance.install_compliance_operator(ctx.client(context), ctx.cfg.compliance, ctx.cfg.acs)


def _scan_schedule(ctx: SetupContext, args: argparse.Namespace) -> None:
    compliance.setup_scan_schedule(ctx.rox(), ctx.cfg.compliance)


def _deploy_apps(ctx: SetupContext, args: argparse.Namespace) -> None:
    failed = demoApps.deploy_demo_apps(ctx.cfg.demo_apps, ctx.sf, ctx.client)
    if failed:
        raise SetupError(f"Demo applications failed in: {', '.join(failed)}")


def _keycloak(ctx: SetupContext, args: argparse.Namespace) -> None:
    keycloak.install_keycloak(ctx.client(), ctx.cfg.keycloak)


def _rhtas(ctx: SetupContext, args: argparse.Namespace) -> None:
    provider = getattr(args, "oidc_provider", None)
    rhtas.install_rhtas(ctx.client(), ctx.cfg.rhtas, ctx.cfg.keycloak, ctx.sf, provider=provider, verify=ctx.verify)


def _openshift_ai(ctx: SetupContext, args: argparse.Namespace) -> None:
    openshiftAi.setup_openshift_ai(
        ctx.client(),
        ctx.cfg.openshift_ai,
        skip_operator=getattr(args, "skip_operator", False),
        skip_cluster=getattr(args, "skip_cluster", False),
    )


def run_cleanup(ctx: SetupContext, args: argparse.Namespace) -> None:
    if args.target == "acs":
        context = getattr(args, "cleanup_context", None) or ctx.cfg.acs.cleanup_context
        if not cleanup.cleanup_acs(ctx.client(context), ctx.cfg.acs):
            raise SetupError(f"RHACS cleanup in {context} finished with errors")
    elif args.target == "rhtas":
        cleanup.cleanup_rhtas(ctx.client(), ctx.cfg.rhtas, assume_yes=args.yes)
    elif args.target == "keycloak":
        keycloak.uninstall_keycloak(ctx.client(), ctx.cfg.keycloak)
    else:
        raise SetupError(f"Unknown cleanup target {args.target}")


STEPS: dict[str, Step] = {
    s.name: s
    for s in (
        Step("roxctl", "Install the roxctl CLI", _roxctl),
        Step("central-tls", "Issue Central's TLS certificate with cert-manager", _central_tls, soft=True),
        Step("acs-operator", "Install the RHACS operator", _acs_operator),
        Step("central", "Install RHACS Central with a passthrough route", _central),
        Step("passthrough", "Switch an existing Central route to passthrough", _passthrough),
        Step("central-routes", "Expose Central through passthrough and reencrypt routes", _central_routes),
        Step("access", "Discover Central's address and generate an API token", _access),
        Step("secured-cluster", "Install the SecuredCluster with a fresh init bundle", _secured_cluster),
        Step("layered-namespaces", "Add layered product namespaces to the platform rule", _layered_namespaces),
        Step("compliance", "Install the compliance operator", _compliance),
        Step("scan-schedule", "Create the daily compliance scan configuration", _scan_schedule),
        Step("deploy-apps", "Deploy the demo applications", _deploy_apps, soft=True),
        Step("keycloak", "Install Red Hat SSO with the signing realm and client", _keycloak),
        Step("rhtas", "Install Trusted Artifact Signer", _rhtas),
        Step("openshift-ai", "Install OpenShift AI and a DataScienceCluster", _openshift_ai),
    )
}

RUN_ALL_STEPS = [
    "roxctl",
    "central-tls",
    "acs-operator",
    "central",
    "access",
    "secured-cluster",
    "layered-namespaces",
    "compliance",
    "scan-schedule",
    "deploy-apps",
    "keycloak",
    "rhtas",
]

# Skipped by run-all when Central is already installed
ACS_INSTALL_STEPS = ("central-tls", "acs-operator", "central", "secured-cluster")


def all_steps() -> list[str]:
    return list(STEPS)


def run_step(ctx: SetupContext, name: str, args: argparse.Namespace) -> None:
    logger.info(f"Running step {name}")
    STEPS[name].run(ctx, args)


def plan(ctx: SetupContext, steps: list[str], skip_keycloak: bool = False) -> list[str]:
    """Order steps as run-all runs them and drop those that are already done."""
    ordered = [s for s in RUN_ALL_STEPS if s in steps]
    ordered += [s for s in steps if s not in ordered]
    if skip_keycloak:
        ordered = [s for s in ordered if s != "keycloak"]
    if any(s in ACS_INSTALL_STEPS for s in ordered) and acsCentral.central_installed(ctx.client(), ctx.cfg.acs):
        logger.info("RHACS Central is already installed, skipping its install steps")
        ordered = [s for s in ordered if s not in ACS_INSTALL_STEPS]
    return ordered


def run_all(ctx: SetupContext, args: argparse.Namespace) -> None:
    steps = plan(ctx, args.steps, skip_keycloak=args.skip_keycloak)
    durations: dict[str, StopWatch] = {}
    failed_soft: list[str] = []

    for name in steps:
        durations[name] = StopWatch.started()
        try:
            run_step(ctx, name, args)
        except STEP_ERRORS as e:
            if not STEPS[name].soft:
                logger.error(f"Step {name} failed")
                raise
            logger.warning(f"Step {name} failed, continuing: {e}")
            failed_soft.append(name)
        finally:
            durations[name].stop()

    for name, sw in durations.items():
        logger.info(f"{name}: {sw}")
    if failed_soft:
        logger.warning(f"Steps with errors: {', '.join(failed_soft)}")

    address = ctx.sf.get(state_file.ROX_CENTRAL_ADDRESS)
    if address:
        logger.info(f"RHACS UI: {address}")
        logger.info(f"User: {ctx.sf.get(state_file.ACS_PORTAL_USERNAME, 'admin')}")
        logger.info(f"Password: {ctx.sf.get(state_file.ACS_PORTAL_PASSWORD, '<not found>')}")
