import random
import subprocess
from types import SimpleNamespace

import pytest
from kubernetes.client.rest import ApiException

from astu import k8s
from astu.config import Settings
from astu.errors import CommandError, KubeError


def make_pod(name, namespace, phase, containers):
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, namespace=namespace),
        status=SimpleNamespace(phase=phase),
        spec=SimpleNamespace(containers=[SimpleNamespace(name=n, image=i) for n, i in containers]),
    )


class FakeCoreApi:
    def __init__(self, pods=(), error=None):
        self.pods = list(pods)
        self.error = error
        self.calls = []

    def list_namespaced_pod(self, namespace, **kwargs):
        self.calls.append(("namespaced", namespace, kwargs))
        if self.error:
            raise self.error
        return SimpleNamespace(items=[p for p in self.pods if p.metadata.namespace == namespace])

    def list_pod_for_all_namespaces(self, **kwargs):
        self.calls.append(("all", None, kwargs))
        if self.error:
            raise self.error
        return SimpleNamespace(items=self.pods)

    def connect_get_namespaced_pod_exec(self, *args, **kwargs):
        raise AssertionError("must go through kubernetes.stream")


class FakeRun:
    """Stands in for subprocess.run; returns queued results in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        returncode, stdout, stderr = self.results.pop(0) if self.results else (0, "", "")
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


class FakeSelect:
    def __init__(self, picks=None):
        self.picks = picks or {}
        self.asked = []

    def __call__(self, items, describe=str, prompt="> ", settings=None, what="item"):
        items = list(items)
        self.asked.append((what, [describe(i) for i in items]))
        return items[self.picks.get(what, 0)]


PODS = [
    make_pod("web-1", "shop", "Running", [("app", "nginx:1.25"), ("sidecar", "envoy:v1")]),
    make_pod("db-0", "shop", "Pending", [("postgres", "postgres:16")]),
    make_pod("coredns-x", "kube-system", "Running", [("coredns", "coredns:1.11")]),
]


# ===================== Data fetching =====================
def test_get_pods_all_namespaces():
    api = FakeCoreApi(PODS)
    pods = k8s.get_pods(api)
    assert [p.describe() for p in pods] == [
        "shop/web-1 [Running]",
        "shop/db-0 [Pending]",
        "kube-system/coredns-x [Running]",
    ]
    assert pods[0].containers == [k8s.Container("app", "nginx:1.25"), k8s.Container("sidecar", "envoy:v1")]
    assert api.calls == [("all", None, {})]


def test_get_pods_namespaced_with_selector():
    api = FakeCoreApi(PODS)
    pods = k8s.get_pods(api, "kube-system", "k8s-app=kube-dns")
    assert [p.name for p in pods] == ["coredns-x"]
    assert api.calls == [("namespaced", "kube-system", {"label_selector": "k8s-app=kube-dns"})]


def test_get_pods_api_error():
    api = FakeCoreApi(error=ApiException(status=403, reason="Forbidden"))
    with pytest.raises(KubeError, match="403 Forbidden"):
        k8s.get_pods(api, "shop")


def test_parse_shells():
    out = "# /etc/shells: valid login shells\r\n/bin/sh\r\n/bin/bash\n\n/usr/bin/bash\n/bin/sh\npod \"x\" deleted\n"
    assert k8s.parse_shells(out) == ["/bin/sh", "/bin/bash", "/usr/bin/bash"]


def test_get_shells_execs_cat_etc_shells(monkeypatch):
    seen = {}

    def fake_stream(method, pod, namespace, **kwargs):
        seen.update(pod=pod, namespace=namespace, **kwargs)
        return "/bin/sh\n/bin/ash\n"

    monkeypatch.setattr(k8s, "stream", fake_stream)
    assert k8s.get_shells(FakeCoreApi(), "shop", "web-1", "app") == ["/bin/sh", "/bin/ash"]
    assert seen["command"] == ["cat", "/etc/shells"]
    assert seen["container"] == "app"
    assert seen["tty"] is False


def test_get_shells_none_found(monkeypatch):
    monkeypatch.setattr(k8s, "stream", lambda *a, **kw: "cat: can't open '/etc/shells'\n")
    with pytest.raises(KubeError):
        k8s.get_shells(FakeCoreApi(), "shop", "web-1", "app")


def test_current_namespace(monkeypatch):
    contexts = [
        {"name": "dev", "context": {"cluster": "c", "namespace": "shop"}},
        {"name": "prod", "context": {"cluster": "c"}},
    ]
    monkeypatch.setattr(k8s, "list_kube_config_contexts", lambda config_file=None: (contexts, contexts[0]))
    assert k8s.current_namespace(Settings()) == "shop"
    assert k8s.current_namespace(Settings(context="prod")) == "default"


def test_list_contexts_prefers_configured_context(monkeypatch):
    contexts = [{"name": "dev", "context": {}}, {"name": "prod", "context": {}}]
    monkeypatch.setattr(k8s, "list_kube_config_contexts", lambda config_file=None: (contexts, contexts[0]))
    assert k8s.list_contexts(Settings()) == (["dev", "prod"], "dev")
    assert k8s.list_contexts(Settings(context="prod")) == (["dev", "prod"], "prod")


# ===================== kubectl =====================
def test_run_kubectl_adds_global_flags(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(k8s.subprocess, "run", fake)
    k8s.run_kubectl(Settings(kubectl_binary="kc", context="dev", kubeconfig="/tmp/kc"), ["get", "pods"])
    assert fake.calls[0][0] == ["kc", "--kubeconfig=/tmp/kc", "--context=dev", "get", "pods"]


def test_run_kubectl_missing_binary(monkeypatch):
    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(k8s.subprocess, "run", missing)
    with pytest.raises(CommandError, match="command not found: kubectl"):
        k8s.run_kubectl(Settings(), ["version"])


def test_run_kubectl_failure_includes_stderr(monkeypatch):
    monkeypatch.setattr(k8s.subprocess, "run", FakeRun((1, "", "error: image pull failed\n")))
    with pytest.raises(CommandError) as exc:
        k8s.run_kubectl(Settings(), ["run", "x"], capture=True)
    assert exc.value.returncode == 1
    assert "image pull failed" in str(exc.value)


def test_exec_container_args(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(k8s.subprocess, "run", fake)
    k8s.exec_container(Settings(), "shop", "web-1", "app", "/bin/bash", kubectl_args=["--quiet"])
    assert fake.calls[0][0] == [
        "kubectl", "exec", "web-1", "--namespace=shop", "--container=app",
        "--stdin", "--tty", "--quiet", "--", "/bin/bash",
    ]


def test_full_exec_container_picks_pod_container_and_shell(monkeypatch):
    fake_run = FakeRun()
    monkeypatch.setattr(k8s.subprocess, "run", fake_run)
    monkeypatch.setattr(k8s, "stream", lambda *a, **kw: "/bin/sh\n/bin/bash\n")
    select = FakeSelect(picks={"pod": 0, "container": 1, "shell": 1})

    k8s.full_exec_container(Settings(), FakeCoreApi(PODS), namespace="shop", select=select)

    assert [what for what, _ in select.asked] == ["pod", "container", "shell"]
    assert select.asked[0][1] == ["shop/web-1 [Running]", "shop/db-0 [Pending]"]
    assert select.asked[1][1] == ["app [nginx:1.25]", "sidecar [envoy:v1]"]
    assert fake_run.calls[0][0][-4:] == ["--stdin", "--tty", "--", "/bin/bash"]
    assert "--container=sidecar" in fake_run.calls[0][0]


def test_full_exec_container_single_container_is_not_asked(monkeypatch):
    fake_run = FakeRun()
    monkeypatch.setattr(k8s.subprocess, "run", fake_run)
    monkeypatch.setattr(k8s, "stream", lambda *a, **kw: "/bin/sh\n")
    select = FakeSelect(picks={"pod": 1})

    k8s.full_exec_container(Settings(), FakeCoreApi(PODS), namespace="shop", select=select)

    assert [what for what, _ in select.asked] == ["pod", "shell"]
    assert "--container=postgres" in fake_run.calls[0][0]


# ===================== run-container =====================
@pytest.mark.parametrize("image,expected", [
    ("ubuntu", "astu-runctr-ubuntu-abc123"),
    ("ubuntu:22.04", "astu-runctr-ubuntu-abc123"),
    ("registry.local:5000/team/Tools:latest", "astu-runctr-tools-abc123"),
    ("busybox@sha256:deadbeef", "astu-runctr-busybox-abc123"),
])
def test_run_container_name(image, expected):
    assert k8s.run_container_name(image, "astu-runctr", "abc123") == expected


def test_rand_hash():
    a = k8s.rand_hash(6, random.Random(42))
    b = k8s.rand_hash(6, random.Random(42))
    assert a == b
    assert len(a) == 6
    assert set(a) <= set(k8s.DICT_LOWER_ALPHA_NUM)
    assert len(k8s.rand_hash(12)) == 12


def test_run_container_discovers_shells_then_attaches(monkeypatch):
    fake_run = FakeRun((0, "/bin/sh\n/bin/bash\npod \"astu-runctr-ubuntu-x-temp\" deleted\n", ""), (0, "", ""))
    monkeypatch.setattr(k8s.subprocess, "run", fake_run)
    select = FakeSelect(picks={"shell": 1})

    pod = k8s.run_container(Settings(), "ubuntu:22.04", kubectl_args=["--namespace=scratch"],
                            select=select, rng=random.Random(1))

    assert pod.startswith("astu-runctr-ubuntu-")
    assert select.asked == [("shell", ["/bin/sh", "/bin/bash"])]

    probe_cmd, probe_kwargs = fake_run.calls[0]
    assert probe_cmd == [
        "kubectl", "run", f"{pod}-temp", "--image=ubuntu:22.04", "--rm", "--stdin",
        "--restart=Never", "--command", "--namespace=scratch", "--", "cat", "/etc/shells",
    ]
    assert probe_kwargs["stdout"] is subprocess.PIPE

    run_cmd, _ = fake_run.calls[1]
    assert run_cmd == [
        "kubectl", "run", pod, "--image=ubuntu:22.04", "--rm", "--restart=Never", "--stdin",
        "--tty", "--command", "--namespace=scratch", "--", "/bin/bash",
    ]


def test_run_container_without_shells(monkeypatch):
    monkeypatch.setattr(k8s.subprocess, "run", FakeRun((0, "", "")))
    with pytest.raises(KubeError):
        k8s.run_container(Settings(), "scratch-image", select=FakeSelect())


@pytest.mark.parametrize("args,expected", [
    (["-n", "kube-system"], ("kube-system", None, [])),
    (["--namespace=kube-system", "--quiet"], ("kube-system", None, ["--quiet"])),
    (["-nkube-system", "-l", "app=web"], ("kube-system", "app=web", [])),
    (["--selector=tier=db", "--pod-running-timeout=1m"], (None, "tier=db", ["--pod-running-timeout=1m"])),
    (["--quiet"], (None, None, ["--quiet"])),
])
def test_split_scope_args(args, expected):
    assert k8s.split_scope_args(args) == expected


def test_full_exec_container_namespace_flag_scopes_listing(monkeypatch):
    fake_run = FakeRun()
    monkeypatch.setattr(k8s.subprocess, "run", fake_run)
    monkeypatch.setattr(k8s, "stream", lambda *a, **kw: "/bin/sh\n")
    api = FakeCoreApi(PODS)

    k8s.full_exec_container(Settings(), api, namespace="shop", kubectl_args=["-n", "kube-system", "--quiet"],
                            select=FakeSelect())

    assert api.calls == [("namespaced", "kube-system", {})]
    cmd = fake_run.calls[0][0]
    assert "--namespace=kube-system" in cmd
    assert "-n" not in cmd
    assert cmd[-5:] == ["--stdin", "--tty", "--quiet", "--", "/bin/sh"]
