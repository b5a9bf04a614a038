class AstuError(Exception):
    """Base class for every error that should end a command with exit status 1."""


class ConfigError(AstuError):
    pass


# ===================== Ping =====================
class EndpointError(AstuError):
    pass


class MalformedEndpoint(EndpointError):
    def __init__(self, raw, cause):
        super().__init__(f"malformed endpoint {raw!r}: {cause}")
        self.raw = raw
        self.cause = cause


class MissingPort(EndpointError):
    def __init__(self, raw):
        super().__init__(f"no port found: {raw}")
        self.raw = raw


class ResolutionFailed(AstuError):
    def __init__(self, host, cause):
        super().__init__(f"unable to resolve {host}: {cause}")
        self.host = host
        self.cause = cause


# ===================== Kubernetes / external commands =====================
class KubeError(AstuError):
    pass


class CommandError(AstuError):
    def __init__(self, command, returncode=None, message=None):
        if message is None:
            message = f"command failed with exit code {returncode}: {' '.join(command)}"
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode


class SelectionError(AstuError):
    pass


class SelectionAborted(SelectionError):
    def __init__(self, what="item"):
        super().__init__(f"no {what} selected")
        self.what = what
