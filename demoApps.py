import os
from typing import Callable
from git.exc import GitError
import common
import state_file
from k8sClient import K8sClient
from logger import logger
from osaConfig import DemoAppsConfig
from state_file import StateFile

log = logger.tagged("DEMO-APPS")

SKUPPER_CRDS = ("sites.skupper.io", "serviceexports.skupper.io")


def checkout(cfg: DemoAppsConfig, sf: StateFile) -> str:
    """Clone the demo repository unless a checkout exists and record it as TUTORIAL_HOME."""
    try:
        common.git_repo_setup(cfg.checkout_dir, repo_wipe=False, url=cfg.repo_url, branch=cfg.branch)
    except GitError as e:
        raise common.SetupError(f"Failed to clone {cfg.repo_url}: {e}") from e
    sf[state_file.TUTORIAL_HOME] = cfg.checkout_dir
    return cfg.checkout_dir


def manifest_targets(root: str, skip_skupper: bool) -> list[str]:
    """Subdirectories of root to apply, or root itself when it has none."""
    subdirs = sorted(e.name for e in os.scandir(root) if e.is_dir() and not e.name.startswith("."))
    if not subdirs:
        return [root]
    targets = []
    for name in subdirs:
        if skip_skupper and name.startswith("skupper"):
            log.warning(f"Skipping {name}, Skupper CRDs are not installed")
            continue
        targets.append(os.path.join(root, name))
    return targets


def deploy_to_context(client: K8sClient, home: str, cfg: DemoAppsConfig) -> bool:
    skupper = all(client.crd_exists(crd) for crd in SKUPPER_CRDS)
    ok = True
    for d in cfg.manifest_dirs:
        root = os.path.join(home, d)
        if not os.path.isdir(root):
            log.warning(f"{d} not found in {home}")
            ok = False
            continue
        for target in manifest_targets(root, skip_skupper=not skupper):
            ret = client.oc(["apply", "-R", "-f", target])
            if not ret.success():
                log.warning(f"Some resources in {os.path.relpath(target, home)} failed to apply to {client.context}: {ret.err.strip()}")
                ok = False
                continue
            client.oc(["label", "-R", "-f", target, cfg.label, "--overwrite"])
    return ok


def deploy_demo_apps(cfg: DemoAppsConfig, sf: StateFile, client_for: Callable[[str], K8sClient]) -> list[str]:
    """Deploy the demo manifests to every configured context, returning the contexts that had failures."""
    home = checkout(cfg, sf)
    failed = []
    for context in cfg.contexts:
        log.info(f"Deploying demo applications to {context}")
        try:
            client = client_for(context)
        except common.SetupError as e:
            log.warning(f"Skipping context {context}: {e}")
            failed.append(context)
            continue
        if not deploy_to_context(client, home, cfg):
            failed.append(context)
    if failed:
        log.warning(f"Demo applications had failures in: {', '.join(failed)}")
    else:
        log.info(f"Demo applications deployed to {', '.join(cfg.contexts)}")
    return failed
