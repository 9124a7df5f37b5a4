"""Host port allocation."""

from collections.abc import Iterable

from spxhub.core.errors import AllocationExhaustedError

DEFAULT_BASE_PORT = 5656
DEFAULT_MAX_PORT = 65535


class PortAllocator:
    """Pick the lowest free port at or above ``base``.

    Stateless: the caller supplies a fresh snapshot of every assigned port
    and holds the allocation lock across read, allocate and insert.
    """

    def __init__(self, base: int = DEFAULT_BASE_PORT, max_port: int = DEFAULT_MAX_PORT) -> None:
        if base > max_port:
            raise ValueError(f"base port {base} is above max port {max_port}")
        self.base = base
        self.max_port = max_port

    def allocate(self, existing_ports: Iterable[int]) -> int:
        """Return the first port not in ``existing_ports``.

        Raises:
            AllocationExhaustedError: every port in [base, max_port] is taken
        """
        used = set(existing_ports)
        port = self.base
        while port in used:
            port += 1
        if port > self.max_port:
            raise AllocationExhaustedError(
                f"No free port between {self.base} and {self.max_port}"
            )
        return port
