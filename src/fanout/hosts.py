"""Host parsing and per-command host ordering."""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class HostTarget:
    """An SSH target split out of a host line."""

    host: str
    user: str | None = None
    port: int | None = None

    @classmethod
    def parse(cls, value: str) -> HostTarget:
        """Parse ``[user@]host[:port]``.

        Bare IPv6 addresses are kept whole; use ``[addr]:port`` to give a port.
        """
        value = value.strip()
        if not value:
            raise ValueError("Host must be a non-empty string")

        user = None
        if "@" in value:
            user, _, value = value.rpartition("@")

        port = None
        if value.startswith("["):
            addr, _, rest = value[1:].partition("]")
            value = addr
            if rest.startswith(":"):
                port = _parse_port(rest[1:])
        elif value.count(":") == 1:
            value, port_str = value.split(":")
            port = _parse_port(port_str)

        if not value:
            raise ValueError("Host must be a non-empty string")
        return cls(host=value, user=user or None, port=port)


def _parse_port(port_str: str) -> int:
    if not port_str.isdigit() or not 0 < int(port_str) < 65536:
        raise ValueError(f"Invalid port: {port_str!r}")
    return int(port_str)


class HostShuffler:
    """Hands out independent random generators for host ordering.

    Seeded once per process from OS entropy unless an explicit seed is given.
    Each dispatch engine gets its own ``random.Random`` so no shuffle state is
    shared between commands.
    """

    def __init__(self, seed: int | None = None):
        self._root = random.Random(seed)

    def spawn(self) -> random.Random:
        """Return a fresh generator seeded from the root generator."""
        return random.Random(self._root.getrandbits(64))

    def permutation(self, host_count: int) -> list[int]:
        return permutation(host_count, self.spawn())


def permutation(host_count: int, rng: random.Random) -> list[int]:
    """Return a shuffled list of the indices ``[0, host_count)``."""
    if host_count < 0:
        raise ValueError(f"host_count must be >= 0, got {host_count}")
    order = list(range(host_count))
    rng.shuffle(order)
    return order
