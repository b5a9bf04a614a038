import argparse
import logging
import re
import sys

import coloredlogs

from astu import __built_by__, __commit__, __date__, __version__, k8s
from astu.config import LOG_LEVEL_MAP, Settings
from astu.errors import AstuError
from astu.ping import ProbeRequest, Scheme, ping
from astu.printer import Printer, colorize
from astu.selection import select_one

logger = logging.getLogger(__name__)

PASSTHROUGH_HELP = 'Flags/args after an initial "--" are passed through to kubectl.'
DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m)?\s*$")
DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, None: 1.0}


def split_passthrough(argv):
    """Split argv at the first "--" into (own args, args for kubectl)."""
    argv = list(argv)
    if "--" in argv:
        i = argv.index("--")
        return argv[:i], argv[i + 1:]
    return argv, []


def parse_duration(value):
    """'5', '5s', '1.5s', '500ms' or '1m' to seconds."""
    m = DURATION_RE.match(value)
    if not m:
        raise argparse.ArgumentTypeError(f"invalid duration: {value!r}")
    seconds = float(m.group(1)) * DURATION_UNITS[m.group(2)]
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive: {value!r}")
    return seconds


def error(message, settings=None):
    enabled = None if settings is None or settings.color else False
    print(colorize(message, 'red', enabled=enabled, stream=sys.stderr), file=sys.stderr)


# ===================== Commands =====================
def cmd_ping(args, settings, printer, passthrough=()):
    scheme = None
    if args.tcp:
        scheme = Scheme.TCP
    elif args.udp:
        scheme = Scheme.UDP
    timeout = args.timeout if args.timeout is not None else settings.ping_timeout
    request = ProbeRequest(raw_endpoint=args.endpoint, scheme_override=scheme,
                           timeout=timeout, allow_ipv6=args.ipv6)
    ping(request, sink=printer)
    return 0


def _namespace_arg(args, settings):
    if getattr(args, "all_namespaces", False):
        return None
    return args.namespace or k8s.current_namespace(settings)


def cmd_exec_container(args, settings, printer, passthrough=(), api=None, select=select_one):
    api = api or k8s.load_core_api(settings)
    k8s.full_exec_container(settings, api, namespace=_namespace_arg(args, settings),
                            label_selector=args.selector, kubectl_args=passthrough, select=select)
    return 0


def cmd_run_container(args, settings, printer, passthrough=(), select=select_one):
    k8s.run_container(settings, args.image, kubectl_args=passthrough, select=select)
    return 0


def status_color(status):
    if status in ("Running", "Succeeded"):
        return 'green'
    if status == "Pending":
        return 'yellow'
    return 'red'


def cmd_pods(args, settings, printer, passthrough=(), api=None):
    api = api or k8s.load_core_api(settings)
    pods = k8s.get_pods(api, _namespace_arg(args, settings), args.selector)
    enabled = None if settings.color else False
    if not pods:
        print(colorize("No pods found.", 'yellow', enabled=enabled))
        return 0
    for pod in pods:
        print(f"{colorize(pod.namespace + '/', 'purple', enabled=enabled)}"
              f"{colorize(pod.name, 'orange', enabled=enabled)} "
              f"[{colorize(pod.status, status_color(pod.status), enabled=enabled)}]")
        for c in pod.containers:
            print(f"    {colorize(c.name, 'cyan', enabled=enabled)} {c.image}")
    return 0


def cmd_context(args, settings, printer, passthrough=()):
    names, active = k8s.list_contexts(settings)
    enabled = None if settings.color else False
    if not names:
        error("No contexts found in kubeconfig.", settings)
        return 1
    name = getattr(args, "name", None)
    if name:
        if name not in names:
            error(f"context not found: {name}", settings)
            return 1
        active = name
    for ctx in names:
        if ctx == active:
            print(colorize(f"* {ctx}", 'green', bold=True, enabled=enabled))
        else:
            print(f"  {ctx}")
    return 0


def cmd_version(args, settings, printer, passthrough=()):
    print(f"version: {__version__}")
    print(f"commit: {__commit__}")
    print(f"date: {__date__}")
    print(f"builtBy: {__built_by__}")
    return 0


def cmd_shell(args, settings, printer, passthrough=()):
    from astu.shell import AstuShell

    AstuShell(settings, printer).cmdloop()
    return 0


# ===================== Parsers =====================
def add_ping_arguments(ap):
    ap.add_argument("endpoint", help="Target such as host:port or scheme://host:port")
    ap.add_argument("-w", "--timeout", type=parse_duration, default=None,
                    help="Connection time limit, e.g. 5s or 500ms (default: 5s)")
    ap.add_argument("-t", "--tcp", action="store_true", help="Force use TCP")
    ap.add_argument("-u", "--udp", action="store_true", help="Force use UDP")
    ap.add_argument("-6", "--ipv6", action="store_true", help="Allow IPv6 addresses")
    return ap


def add_pod_filter_arguments(ap):
    ap.add_argument("-n", "--namespace", help="Namespace to list pods from (default: the context's)")
    ap.add_argument("-A", "--all-namespaces", action="store_true", help="List pods across all namespaces")
    ap.add_argument("-l", "--selector", help="Label selector to filter pods")
    return ap


def add_run_container_arguments(ap):
    ap.add_argument("image", help="Container image to run")
    return ap


def build_argparser():
    ap = argparse.ArgumentParser(
        prog="astu",
        description="All-Seeing Trace Utility",
        epilog=PASSTHROUGH_HELP,
    )
    ap.add_argument("--no-color", action="store_true", help="Disable colorized output")
    ap.add_argument("-l", "--log-level", choices=LOG_LEVEL_MAP.keys(), default=None,
                    help="Set log level (default: warn)")
    ap.add_argument("--context", help="Kubernetes context to use")
    ap.add_argument("--kubeconfig", help="Path to the kubeconfig file")
    ap.set_defaults(handler=cmd_shell)
    sub = ap.add_subparsers(dest="command", metavar="<command>")

    p = sub.add_parser("ping", help="Check connectivity to a target")
    add_ping_arguments(p)
    p.set_defaults(handler=cmd_ping)

    k8s_ap = sub.add_parser("k8s", aliases=["kubernetes", "kube"], help="Kubernetes commands",
                            epilog=PASSTHROUGH_HELP)
    k8s_sub = k8s_ap.add_subparsers(dest="k8s_command", metavar="<k8s-command>", required=True)

    p = k8s_sub.add_parser("exec-container", aliases=["exec-ctr", "enter-container", "enter-ctr", "xx"],
                           help="Gets an interactive shell within a Kubernetes container",
                           epilog=PASSTHROUGH_HELP)
    add_pod_filter_arguments(p)
    p.set_defaults(handler=cmd_exec_container)

    p = k8s_sub.add_parser("run-container", aliases=["run-ctr"],
                           help="Runs a container image in Kubernetes and attaches to it",
                           epilog=PASSTHROUGH_HELP)
    add_run_container_arguments(p)
    p.set_defaults(handler=cmd_run_container)

    p = k8s_sub.add_parser("pods", help="List pods and their containers")
    add_pod_filter_arguments(p)
    p.set_defaults(handler=cmd_pods)

    p = sub.add_parser("context", help="List Kubernetes contexts, or check that NAME exists")
    p.add_argument("name", nargs="?", help="Context to mark as selected")
    p.set_defaults(handler=cmd_context)

    p = sub.add_parser("version", help="Version and build info for this program")
    p.set_defaults(handler=cmd_version)

    p = sub.add_parser("shell", help="Interactive shell (default)")
    p.set_defaults(handler=cmd_shell)
    return ap


def setup_logging(settings):
    coloredlogs.install(
        level=settings.log_level_const,
        fmt='[%(levelname)s] %(message)s',
        stream=sys.stderr,
        isatty=None if settings.color else False,
        level_styles=coloredlogs.DEFAULT_LEVEL_STYLES,
        field_styles=coloredlogs.DEFAULT_FIELD_STYLES,
    )


# ===================== Main =====================
def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    argv, passthrough = split_passthrough(argv)
    args = build_argparser().parse_args(argv)

    try:
        settings = Settings.from_env().with_overrides(
            context=args.context,
            kubeconfig=args.kubeconfig,
            log_level=args.log_level,
            color=False if args.no_color else None,
        )
    except AstuError as e:
        error(str(e))
        return 1

    setup_logging(settings)
    logger.debug("Log level set to %s", settings.log_level.upper())
    printer = Printer(color=settings.color)

    try:
        return args.handler(args, settings, printer, passthrough)
    except AstuError as e:
        error(str(e), settings)
        return 1
    except KeyboardInterrupt:
        return 130


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
