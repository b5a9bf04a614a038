import logging
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from astu.errors import ConfigError

LOG_LEVEL_MAP = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, built once in ``cli.main`` and passed to every call.

    Env vars:
    - ASTU_KUBECTL / ASTU_FZF: binaries to shell out to
    - ASTU_RUNCTR_PREFIX: pod name prefix for run-container
    - ASTU_KUBECONFIG / ASTU_CONTEXT: kubeconfig file and context
    - ASTU_PING_TIMEOUT: default ping timeout in seconds
    - ASTU_LOG_LEVEL: debug|info|warn|error
    - NO_COLOR: disables colored output when set to anything
    """

    kubectl_binary: str = "kubectl"
    fzf_binary: str = "fzf"
    run_container_prefix: str = "astu-runctr"
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    ping_timeout: float = 5.0
    color: bool = True
    log_level: str = "warn"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        timeout_raw = env.get("ASTU_PING_TIMEOUT")
        timeout = cls.ping_timeout
        if timeout_raw:
            try:
                timeout = float(timeout_raw)
            except ValueError:
                raise ConfigError(f"ASTU_PING_TIMEOUT must be a number of seconds, got {timeout_raw!r}")
            if timeout <= 0:
                raise ConfigError(f"ASTU_PING_TIMEOUT must be positive, got {timeout_raw!r}")

        log_level = (env.get("ASTU_LOG_LEVEL") or cls.log_level).lower().strip()
        if log_level not in LOG_LEVEL_MAP:
            raise ConfigError(f"ASTU_LOG_LEVEL must be one of {', '.join(LOG_LEVEL_MAP)}, got {log_level!r}")

        return cls(
            kubectl_binary=env.get("ASTU_KUBECTL") or cls.kubectl_binary,
            fzf_binary=env.get("ASTU_FZF") or cls.fzf_binary,
            run_container_prefix=env.get("ASTU_RUNCTR_PREFIX") or cls.run_container_prefix,
            kubeconfig=env.get("ASTU_KUBECONFIG") or None,
            context=env.get("ASTU_CONTEXT") or None,
            ping_timeout=timeout,
            color="NO_COLOR" not in env,
            log_level=log_level,
        )

    def with_overrides(self, **overrides) -> "Settings":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def log_level_const(self) -> int:
        return LOG_LEVEL_MAP.get(self.log_level, logging.WARNING)
