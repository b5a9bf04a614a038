import argparse
import cmd
import shlex

from astu import cli, k8s
from astu.errors import AstuError
from astu.printer import center_text, colorize
from astu.selection import select_one


class _ArgumentError(Exception):
    pass


class _ShellArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports bad input instead of exiting the shell."""

    def error(self, message):
        raise _ArgumentError(f"{self.prog}: {message}")


def _parser(prog, add_arguments):
    ap = _ShellArgumentParser(prog=prog, add_help=False)
    return add_arguments(ap)


# ===================== Shell =====================
class AstuShell(cmd.Cmd):
    width = 70

    def __init__(self, settings, printer, select=select_one, stdin=None, stdout=None):
        super().__init__(stdin=stdin, stdout=stdout)
        self.settings = settings
        self.printer = printer
        self.select = select
        self._api = None
        self.parsers = {
            "ping": _parser("ping", cli.add_ping_arguments),
            "exec": _parser("exec", cli.add_pod_filter_arguments),
            "pods": _parser("pods", cli.add_pod_filter_arguments),
            "run": _parser("run", cli.add_run_container_arguments),
        }
        self.intro = self._c("Welcome to the astu shell. Type help or ? to list commands.\n", 'cyan')
        self.prompt = self._c("astu> ", 'green')

    def _c(self, text, color=None, bold=False):
        return colorize(text, color, bold=bold, enabled=None if self.settings.color else False)

    def _say(self, text=""):
        self.stdout.write(text + "\n")

    @property
    def api(self):
        """CoreV1Api for the current context, loaded on first use."""
        if self._api is None:
            self._api = k8s.load_core_api(self.settings)
        return self._api

    def _run(self, name, arg, handler, **kwargs):
        try:
            argv, passthrough = cli.split_passthrough(shlex.split(arg))
            args = self.parsers[name].parse_args(argv)
            handler(args, self.settings, self.printer, passthrough, **kwargs)
        except (_ArgumentError, ValueError) as e:
            self._say(self._c(str(e), 'red'))
        except AstuError as e:
            self._say(self._c(str(e), 'red'))
        except KeyboardInterrupt:
            self._say()

    def emptyline(self):
        pass

    def default(self, line):
        self._say(self._c(f"Unknown command: {line.split()[0]}. Type help for a list.", 'red'))

    # ===================== Commands =====================
    def do_ping(self, arg):
        """ping <host:port> [-w 5s] [-t|-u] [-6] — Check connectivity to every address of a target."""
        self._run("ping", arg, cli.cmd_ping)

    def do_exec(self, arg):
        """exec [-n ns | -A] [-l selector] [-- kubectl args] — Shell into a container."""
        try:
            api = self.api
        except AstuError as e:
            self._say(self._c(str(e), 'red'))
            return
        self._run("exec", arg, cli.cmd_exec_container, api=api, select=self.select)

    def do_run(self, arg):
        """run <image> [-- kubectl args] — Run a throwaway container and attach to it."""
        self._run("run", arg, cli.cmd_run_container, select=self.select)

    def do_pods(self, arg):
        """pods [-n ns | -A] [-l selector] — List pods and their containers."""
        try:
            api = self.api
        except AstuError as e:
            self._say(self._c(str(e), 'red'))
            return
        self._run("pods", arg, cli.cmd_pods, api=api)

    def do_context(self, arg):
        """Switch Kubernetes context."""
        try:
            ctx_name = arg.strip()
            if not ctx_name:
                names, active = k8s.list_contexts(self.settings)
                ctx_name = self.select(
                    names,
                    describe=lambda n: f"{n} (current)" if n == active else n,
                    prompt="context> ",
                    settings=self.settings,
                    what="context",
                )
            settings = self.settings.with_overrides(context=ctx_name)
            api = k8s.load_core_api(settings)
        except AstuError as e:
            self._say(self._c(f"Failed to switch context: {e}", 'red'))
            return
        self.settings = settings
        self._api = api
        self._say(self._c(f"Switched to context: {ctx_name}", 'green'))

    def do_version(self, arg):
        """Version and build info."""
        cli.cmd_version(None, self.settings, self.printer)

    def do_exit(self, arg):
        """Exit shell."""
        return True

    def do_quit(self, arg):
        """Exit shell."""
        return True

    def do_EOF(self, arg):
        self._say()
        return True

    def do_help(self, arg=None):
        if arg:
            return super().do_help(arg)
        self._say(self._c("=" * self.width, 'purple'))
        self._say(self._c(center_text("ASTU", self.width), 'purple', bold=True))
        self._say(self._c("=" * self.width, 'purple'))
        self._say(self._c("Available commands:", 'cyan'))
        self._say(f"  {self._c('ping <host:port> [-w 5s] [-t|-u] [-6]', 'yellow')} — Check connectivity to every address of a target.")
        self._say(f"  {self._c('exec [-n ns | -A] [-l selector] [-- kubectl args]', 'yellow')} — Pick a pod, container and shell, then open it.")
        self._say(f"  {self._c('run <image> [-- kubectl args]', 'yellow')} — Run a throwaway container and attach to it.")
        self._say(f"  {self._c('pods [-n ns | -A] [-l selector]', 'yellow')} — List pods and their containers.")
        self._say(f"  {self._c('context [name]', 'yellow')} — Switch Kubernetes context.")
        self._say(f"  {self._c('version', 'yellow')} — Version and build info.")
        self._say(f"  {self._c('exit/quit', 'yellow')} — Exit shell.")
