import os
import pathlib
import pytest
import demoApps
import host
import state_file
from common import SetupError
from conftest import FakeK8sClient
from k8sClient import K8sClient
from osaConfig import DemoAppsConfig
from state_file import StateFile


def _tree(root: pathlib.Path, *dirs: str) -> None:
    for d in dirs:
        (root / d).mkdir(parents=True)
        (root / d / "deployment.yaml").write_text("kind: Deployment\n")


def test_manifest_targets(tmp_path: pathlib.Path) -> None:
    _tree(tmp_path, "web", "skupper-demo", ".git", "api")
    targets = demoApps.manifest_targets(str(tmp_path), skip_skupper=True)
    assert targets == [str(tmp_path / "api"), str(tmp_path / "web")]

    with_skupper = demoApps.manifest_targets(str(tmp_path), skip_skupper=False)
    assert str(tmp_path / "skupper-demo") in with_skupper


def test_manifest_targets_flat_directory(tmp_path: pathlib.Path) -> None:
    (tmp_path / "deployment.yaml").write_text("kind: Deployment\n")
    assert demoApps.manifest_targets(str(tmp_path), skip_skupper=True) == [str(tmp_path)]


def test_deploy_to_context(tmp_path: pathlib.Path, k8s: FakeK8sClient) -> None:
    cfg = DemoAppsConfig(manifest_dirs=["manifests"])
    _tree(tmp_path / "manifests", "api")
    assert demoApps.deploy_to_context(k8s, str(tmp_path), cfg)
    target = str(tmp_path / "manifests" / "api")
    assert k8s.oc_calls == [
        ["apply", "-R", "-f", target],
        ["label", "-R", "-f", target, "demo=roadshow", "--overwrite"],
    ]


def test_deploy_to_context_failures(tmp_path: pathlib.Path, k8s: FakeK8sClient) -> None:
    cfg = DemoAppsConfig(manifest_dirs=["manifests", "missing"])
    _tree(tmp_path / "manifests", "api")
    k8s.oc_result = host.Result("", "error: unable to recognize", 1)
    assert not demoApps.deploy_to_context(k8s, str(tmp_path), cfg)
    # nothing is labelled when the apply failed
    assert k8s.oc_calls == [["apply", "-R", "-f", str(tmp_path / "manifests" / "api")]]


def test_deploy_demo_apps(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
    checkout_dir = tmp_path / "demo"
    _tree(checkout_dir / "manifests", "api")
    monkeypatch.setattr(demoApps.common, "git_repo_setup", lambda *args, **kwargs: False)
    sf = StateFile("test", str(tmp_path / "state"), use_env=False)
    cfg = DemoAppsConfig(checkout_dir=str(checkout_dir), manifest_dirs=["manifests"], contexts=["aws-us", "local-cluster"])

    clients: dict[str, FakeK8sClient] = {}

    def client_for(context: str) -> K8sClient:
        if context == "aws-us":
            raise SetupError("context aws-us not found in kubeconfig")
        clients[context] = FakeK8sClient()
        return clients[context]

    assert demoApps.deploy_demo_apps(cfg, sf, client_for) == ["aws-us"]
    assert len(clients["local-cluster"].oc_calls) == 2
    assert sf[state_file.TUTORIAL_HOME] == str(checkout_dir)
    assert os.path.isdir(sf[state_file.TUTORIAL_HOME])
