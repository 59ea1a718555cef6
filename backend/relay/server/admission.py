"""Connection admission: global capacity and per-origin caps."""

import ipaddress
from collections import Counter
from collections.abc import Mapping

import structlog

from relay.logic.enums import CloseCode
from shared.validators import WILDCARD

logger = structlog.get_logger()

UNKNOWN_ORIGIN = "unknown"


class AdmissionController:
    """Decide whether a new socket may be accepted.

    The origin of a connection is its peer IP, or the left-most address of the
    forwarded-for header when the peer is a trusted proxy. Headers from
    untrusted peers are ignored so clients cannot pick their own origin.
    """

    def __init__(
        self,
        max_connections: int,
        max_per_origin: int,
        *,
        trusted_proxies: list[str] | None = None,
        forwarded_for_header: str = "x-forwarded-for",
    ) -> None:
        self._max_connections = max_connections
        self._max_per_origin = max_per_origin
        proxies = trusted_proxies or []
        self._trust_all = WILDCARD in proxies
        self._trusted_networks = [ipaddress.ip_network(p, strict=False) for p in proxies if p != WILDCARD]
        self._forwarded_for_header = forwarded_for_header.lower()
        self._per_origin: Counter[str] = Counter()
        self._total = 0

    @property
    def connection_count(self) -> int:
        return self._total

    @property
    def max_connections(self) -> int:
        return self._max_connections

    def origin_count(self, origin: str) -> int:
        return self._per_origin[origin]

    def _is_trusted(self, peer_host: str | None) -> bool:
        if self._trust_all:
            return True
        if peer_host is None:
            return False
        try:
            peer = ipaddress.ip_address(peer_host)
        except ValueError:
            return False
        return any(peer in network for network in self._trusted_networks)

    def resolve_origin(self, peer_host: str | None, headers: Mapping[str, str]) -> str:
        if self._is_trusted(peer_host):
            forwarded = headers.get(self._forwarded_for_header, "")
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        return peer_host or UNKNOWN_ORIGIN

    def admit(self, origin: str) -> tuple[int, str] | None:
        """Reserve a slot for the origin.

        Returns None when admitted, otherwise the (close code, reason) to
        reject with. An admitted origin must later be passed to release().
        """
        if self._total >= self._max_connections:
            logger.warning("connection rejected: server full", origin=origin, connections=self._total)
            return CloseCode.SERVER_FULL, "server_full"
        if self._per_origin[origin] >= self._max_per_origin:
            logger.warning("connection rejected: origin limit", origin=origin)
            return CloseCode.ORIGIN_LIMIT, "too_many_connections_from_origin"

        self._per_origin[origin] += 1
        self._total += 1
        return None

    def release(self, origin: str) -> None:
        if self._per_origin[origin] <= 0:
            return
        self._per_origin[origin] -= 1
        if self._per_origin[origin] == 0:
            del self._per_origin[origin]
        self._total -= 1
