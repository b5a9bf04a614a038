"""
Kubernetes shortcuts.

Pod, container and context discovery goes through the kubernetes client; the
interactive parts (exec into a container, run a throwaway container) shell out
to kubectl so it can own the terminal until the session ends.
"""
import logging
import posixpath
import random
import string
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.config.kube_config import list_kube_config_contexts
from kubernetes.stream import stream

from astu.errors import CommandError, KubeError
from astu.selection import select_one

logger = logging.getLogger(__name__)

DICT_LOWER_ALPHA_NUM = string.digits + string.ascii_lowercase
SHELLS_FILE = "/etc/shells"


@dataclass
class Container:
    name: str
    image: str

    def describe(self):
        return f"{self.name} [{self.image}]"


@dataclass
class Pod:
    name: str
    namespace: str
    status: str
    containers: List[Container] = field(default_factory=list)

    def describe(self):
        return f"{self.namespace}/{self.name} [{self.status}]"


# ===================== Client / contexts =====================
def load_core_api(settings):
    try:
        config.load_kube_config(config_file=settings.kubeconfig, context=settings.context)
    except (ConfigException, OSError) as e:
        raise KubeError(f"unable to load kubeconfig: {e}")
    return client.CoreV1Api()


def list_contexts(settings):
    """Return (context names, active context name)."""
    try:
        contexts, active = list_kube_config_contexts(config_file=settings.kubeconfig)
    except (ConfigException, OSError) as e:
        raise KubeError(f"unable to read kubeconfig contexts: {e}")
    names = [ctx['name'] for ctx in contexts or []]
    active_name = settings.context or (active or {}).get('name')
    return names, active_name


def current_namespace(settings):
    """Namespace of the selected context, as kubectl would default to."""
    try:
        contexts, active = list_kube_config_contexts(config_file=settings.kubeconfig)
    except (ConfigException, OSError) as e:
        raise KubeError(f"unable to read kubeconfig contexts: {e}")
    selected = active
    if settings.context:
        selected = next((c for c in contexts or [] if c['name'] == settings.context), None)
    return ((selected or {}).get('context') or {}).get('namespace') or "default"


# ===================== Data fetching =====================
def get_pods(api, namespace=None, label_selector=None) -> List[Pod]:
    """Pods in namespace (all namespaces when None) with their containers."""
    kwargs = {"label_selector": label_selector} if label_selector else {}
    try:
        if namespace:
            pods_raw = api.list_namespaced_pod(namespace, **kwargs)
        else:
            pods_raw = api.list_pod_for_all_namespaces(**kwargs)
    except ApiException as e:
        raise KubeError(f"unable to get pods: {e.status} {e.reason}")
    except urllib3.exceptions.HTTPError as e:
        raise KubeError(f"unable to get pods: {e}")

    pods = []
    for pod in pods_raw.items:
        containers = [Container(c.name, c.image) for c in (pod.spec.containers or [])]
        pods.append(Pod(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            status=pod.status.phase if pod.status else "Unknown",
            containers=containers,
        ))
    logger.debug("Found %d pod(s) in %s", len(pods), namespace or "all namespaces")
    return pods


def parse_shells(output):
    """Absolute shell paths from the contents of /etc/shells (comments and noise dropped)."""
    shells = []
    for line in (output or "").replace("\r", "").splitlines():
        line = line.strip()
        if line.startswith("/") and line not in shells:
            shells.append(line)
    return shells


def get_shells(api, namespace, pod, container):
    try:
        out = stream(
            api.connect_get_namespaced_pod_exec,
            pod,
            namespace,
            container=container,
            command=["cat", SHELLS_FILE],
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
        )
    except ApiException as e:
        raise KubeError(f"unable to get shells: {e.status} {e.reason}")
    except urllib3.exceptions.HTTPError as e:
        raise KubeError(f"unable to get shells: {e}")

    shells = parse_shells(out)
    if not shells:
        raise KubeError(f"unable to get shells: no entries in {SHELLS_FILE} of {namespace}/{pod}/{container}")
    return shells


# ===================== kubectl =====================
def run_kubectl(settings, args, capture=False):
    cmd = [settings.kubectl_binary]
    if settings.kubeconfig:
        cmd.append(f"--kubeconfig={settings.kubeconfig}")
    if settings.context:
        cmd.append(f"--context={settings.context}")
    cmd.extend(args)

    logger.debug("Running external command: %s", " ".join(cmd))
    try:
        if capture:
            proc = subprocess.run(cmd, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                                  stderr=subprocess.PIPE, text=True, check=False)
        else:
            proc = subprocess.run(cmd, check=False)
    except FileNotFoundError:
        raise CommandError(cmd, message=f"command not found: {settings.kubectl_binary}. "
                                        "Please ensure it is installed and in your PATH.")

    if proc.returncode != 0:
        message = None
        if capture and proc.stderr and proc.stderr.strip():
            message = f"{' '.join(cmd)} (exit code {proc.returncode}): {proc.stderr.strip()}"
        raise CommandError(cmd, proc.returncode, message=message)
    return proc


def exec_container(settings, namespace, pod, container, shell, kubectl_args=()):
    args = ["exec", pod, f"--namespace={namespace}", f"--container={container}", "--stdin", "--tty"]
    args.extend(kubectl_args)
    args.extend(["--", shell])
    return run_kubectl(settings, args)


def split_scope_args(kubectl_args):
    """Pull pod-scoping flags out of kubectl args.

    Returns (namespace, label_selector, rest). Namespace and selector flags
    decide which pods are listed; everything else is left for kubectl exec,
    which always targets the namespace of the picked pod.
    """
    namespace = label_selector = None
    rest = []
    args = list(kubectl_args)
    i = 0
    while i < len(args):
        arg = args[i]
        for short, long in (("-n", "--namespace"), ("-l", "--selector")):
            if arg in (short, long) and i + 1 < len(args):
                value = args[i + 1]
                i += 1
            elif arg.startswith(long + "="):
                value = arg[len(long) + 1:]
            elif arg.startswith(short) and len(arg) > 2 and not arg.startswith("--"):
                value = arg[2:].lstrip("=")
            else:
                continue
            if short == "-n":
                namespace = value
            else:
                label_selector = value
            break
        else:
            rest.append(arg)
        i += 1
    return namespace, label_selector, rest


def full_exec_container(settings, api, namespace=None, label_selector=None, kubectl_args=(),
                        select=select_one):
    """Pick a pod, a container and a shell, then open that shell interactively.

    Namespace and selector flags in kubectl_args scope the pod listing.
    """
    scoped_ns, scoped_selector, kubectl_args = split_scope_args(kubectl_args)
    namespace = scoped_ns or namespace
    label_selector = scoped_selector or label_selector
    pods = get_pods(api, namespace, label_selector)
    pod = select(pods, describe=Pod.describe, prompt="pod> ", settings=settings, what="pod")

    if len(pod.containers) == 1:
        container = pod.containers[0]
    else:
        container = select(pod.containers, describe=Container.describe, prompt="container> ",
                           settings=settings, what="container")

    shells = get_shells(api, pod.namespace, pod.name, container.name)
    shell = select(shells, prompt="shell> ", settings=settings, what="shell")

    logger.info("Opening %s in %s/%s/%s", shell, pod.namespace, pod.name, container.name)
    exec_container(settings, pod.namespace, pod.name, container.name, shell, kubectl_args)


# ===================== run-container =====================
def rand_hash(length, rng: Optional[random.Random] = None):
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(DICT_LOWER_ALPHA_NUM) for _ in range(length))


def run_container_name(image, prefix, suffix):
    """<prefix>-<image base name without tag or digest>-<suffix>"""
    name = posixpath.basename(image.rstrip("/"))
    name = name.split(":", 1)[0]
    name = name.split("@", 1)[0]
    return f"{prefix}-{name.lower()}-{suffix}"


def run_container(settings, image, kubectl_args=(), select=select_one, rng=None):
    """Start a throwaway pod from image, let the user pick a shell, and attach to it.

    Returns the pod name. The pod is removed by kubectl (--rm) when the shell exits.
    """
    pod = run_container_name(image, settings.run_container_prefix, rand_hash(6, rng))

    probe_args = ["run", f"{pod}-temp", f"--image={image}", "--rm", "--stdin",
                  "--restart=Never", "--command"]
    probe_args.extend(kubectl_args)
    probe_args.extend(["--", "cat", SHELLS_FILE])
    proc = run_kubectl(settings, probe_args, capture=True)

    shells = parse_shells(proc.stdout)
    if not shells:
        raise KubeError(f"unable to get shells: no entries in {SHELLS_FILE} of image {image}")
    shell = select(shells, prompt="shell> ", settings=settings, what="shell")

    args = ["run", pod, f"--image={image}", "--rm", "--restart=Never", "--stdin", "--tty", "--command"]
    args.extend(kubectl_args)
    args.extend(["--", shell])
    logger.info("Running %s as pod %s with %s", image, pod, shell)
    run_kubectl(settings, args)
    return pod
