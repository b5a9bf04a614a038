"""
Concurrent multi-address connectivity checks.

Given an endpoint such as ``example.com:443`` or ``udp://10.0.0.1:53``:
- parse it into host, port and transport
- resolve the host to every address it has
- dial each address at the same time, each attempt bounded by its own timeout
- report one status line per address as soon as that address is done
"""
import ipaddress
import logging
import socket
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from astu.errors import MalformedEndpoint, MissingPort, ResolutionFailed

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class Scheme(str, Enum):
    TCP = "tcp"
    UDP = "udp"


SUPPORTED_SCHEMES = (Scheme.TCP, Scheme.UDP)


class OutcomeKind(Enum):
    OPEN = "open"
    CONNECTION_FAILED = "connection_failed"
    SKIPPED_IPV6 = "skipped_ipv6"
    INVALID_ADDRESS = "invalid_address"
    UNSUPPORTED_SCHEME = "unsupported_scheme"


@dataclass(frozen=True)
class ProbeRequest:
    raw_endpoint: str
    scheme_override: Optional[Scheme] = None
    timeout: float = DEFAULT_TIMEOUT
    allow_ipv6: bool = False


@dataclass(frozen=True)
class ResolvedEndpoint:
    host: str
    port: str
    scheme: Scheme


@dataclass(frozen=True)
class ProbeOutcome:
    ip: str
    address: str
    kind: OutcomeKind
    detail: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.kind is OutcomeKind.OPEN

    @property
    def is_skipped(self) -> bool:
        return self.kind is OutcomeKind.SKIPPED_IPV6

    @property
    def status(self) -> str:
        if self.kind is OutcomeKind.OPEN:
            return "Open"
        if self.kind is OutcomeKind.SKIPPED_IPV6:
            return "Skipped"
        if self.kind is OutcomeKind.INVALID_ADDRESS:
            return "Not a valid IP address"
        if self.kind is OutcomeKind.UNSUPPORTED_SCHEME:
            return f"Unsupported scheme: {self.detail}"
        return self.detail or "connection failed"


Dialer = Callable[[Scheme, str, str, float], None]
Resolver = Callable[[str], List[str]]


# ===================== Endpoint parsing =====================
def parse_endpoint(raw_endpoint: str, scheme_override: Optional[Scheme] = None) -> ResolvedEndpoint:
    """Split ``[scheme://]host:port[/path]`` into a ResolvedEndpoint.

    A missing scheme means TCP. ``udp`` means UDP; any other URL scheme
    (http, https, ssh, ...) names a protocol carried over TCP.
    """
    raw = (raw_endpoint or "").strip()
    if not raw:
        raise MalformedEndpoint(raw_endpoint, "empty endpoint")

    # without "//" urlsplit reads "host:80" as scheme "host"
    candidate = raw if "://" in raw else "//" + raw
    try:
        parts = urlsplit(candidate)
        port_number = parts.port
    except ValueError as e:
        raise MalformedEndpoint(raw_endpoint, e)

    if not parts.hostname:
        raise MalformedEndpoint(raw_endpoint, "no host")
    if port_number is None:
        raise MissingPort(raw_endpoint)
    port = parts.netloc.rpartition(":")[2]

    if scheme_override:
        try:
            scheme = Scheme(scheme_override)
        except ValueError:
            raise MalformedEndpoint(raw_endpoint, f"unsupported scheme: {scheme_override}")
    elif parts.scheme.lower() == Scheme.UDP.value:
        scheme = Scheme.UDP
    else:
        scheme = Scheme.TCP

    return ResolvedEndpoint(host=parts.hostname, port=port, scheme=scheme)


# ===================== Resolution =====================
def resolve(host: str) -> List[str]:
    """Every IPv4/IPv6 address the platform resolver returns for host, in order, without duplicates."""
    try:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionFailed(host, e)

    addresses = []
    for family, _, _, _, sockaddr in infos:
        if family not in (socket.AF_INET, socket.AF_INET6):
            continue
        ip = sockaddr[0]
        if ip not in addresses:
            addresses.append(ip)
    logger.debug("Resolved %s to %s", host, ", ".join(addresses) or "nothing")
    return addresses


# ===================== Per-address checks =====================
def classify_address(ip: str, port: str, allow_ipv6: bool) -> Tuple[Optional[str], Optional[str], Optional[ProbeOutcome]]:
    """
    Decide whether ip may be dialed, before any socket is opened.

    Returns (dial_host, address, None) for a usable address, or
    (None, None, outcome) when the address is skipped or invalid.
    IPv4-mapped IPv6 addresses are treated as the IPv4 address they carry.
    """
    try:
        parsed = ipaddress.ip_address(ip)
    except ValueError:
        return None, None, ProbeOutcome(str(ip), str(ip), OutcomeKind.INVALID_ADDRESS)

    if parsed.version == 6 and parsed.ipv4_mapped is not None:
        parsed = parsed.ipv4_mapped

    host = str(parsed)
    if parsed.version == 4:
        return host, f"{host}:{port}", None
    if not allow_ipv6:
        return None, None, ProbeOutcome(str(ip), str(ip), OutcomeKind.SKIPPED_IPV6)
    return host, f"[{host}]:{port}", None


def dial(scheme: Scheme, host: str, port: str, timeout: float) -> None:
    """Open and close one connection; raises OSError on failure or timeout.

    For UDP this only succeeds or fails locally (no handshake), as with any
    connected datagram socket.
    """
    sock_type = socket.SOCK_STREAM if Scheme(scheme) is Scheme.TCP else socket.SOCK_DGRAM
    family, _, _, _, sockaddr = socket.getaddrinfo(host, port, type=sock_type)[0]
    with socket.socket(family, sock_type) as sock:
        sock.settimeout(timeout)
        sock.connect(sockaddr)


def _scheme_name(scheme) -> str:
    return scheme.value if isinstance(scheme, Scheme) else str(scheme)


def _reason(err: OSError) -> str:
    if isinstance(err, socket.timeout):
        return "i/o timeout"
    return err.strerror or str(err) or type(err).__name__


def check_connect(ip: str, port: str, scheme, timeout: float, allow_ipv6: bool,
                  dialer: Dialer = dial) -> ProbeOutcome:
    host, address, outcome = classify_address(ip, port, allow_ipv6)
    if outcome is not None:
        return outcome

    if scheme not in SUPPORTED_SCHEMES:
        return ProbeOutcome(ip, address, OutcomeKind.UNSUPPORTED_SCHEME, _scheme_name(scheme))

    scheme = Scheme(scheme)
    logger.debug("Dialing %s %s (timeout %ss)", scheme.value, address, timeout)
    try:
        dialer(scheme, host, port, timeout)
    except OSError as e:
        detail = f"dial {scheme.value} {address}: {_reason(e)}"
        return ProbeOutcome(ip, address, OutcomeKind.CONNECTION_FAILED, detail)
    return ProbeOutcome(ip, address, OutcomeKind.OPEN)


# ===================== Fan-out =====================
def probe_all(addresses: Iterable[str], port: str, scheme, timeout: float, allow_ipv6: bool,
              sink=None, dialer: Dialer = dial) -> List[ProbeOutcome]:
    """
    Check every address concurrently, one worker per address.

    Each worker reports to sink the moment its own check ends; this call
    returns only once all of them have, with one outcome per address in
    completion order.
    """
    addresses = list(addresses)
    if not addresses:
        return []

    def probe_one(ip):
        outcome = check_connect(ip, port, scheme, timeout, allow_ipv6, dialer=dialer)
        if sink is not None:
            sink.report(outcome)
        return outcome

    outcomes = []
    with ThreadPoolExecutor(max_workers=len(addresses)) as exe:
        futures = [exe.submit(probe_one, ip) for ip in addresses]
        for future in as_completed(futures):
            outcomes.append(future.result())
    return outcomes


def ping(request: ProbeRequest, sink=None, resolver: Resolver = resolve,
         dialer: Dialer = dial) -> List[ProbeOutcome]:
    """Parse, resolve, then probe every address. Only parse and resolve errors raise."""
    endpoint = parse_endpoint(request.raw_endpoint, request.scheme_override)
    addresses = resolver(endpoint.host)
    logger.info("Checking %d address(es) for %s port %s/%s",
                len(addresses), endpoint.host, endpoint.port, endpoint.scheme.value)
    return probe_all(addresses, endpoint.port, endpoint.scheme, request.timeout,
                     request.allow_ipv6, sink=sink, dialer=dialer)
