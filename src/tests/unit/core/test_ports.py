"""Unit tests for PortAllocator."""

import pytest

from spxhub.core.errors import AllocationExhaustedError
from spxhub.core.ports import PortAllocator


class TestPortAllocator:
    """Tests for PortAllocator.allocate."""

    def test_empty_returns_base(self) -> None:
        """No assigned ports -> base port."""
        assert PortAllocator().allocate(set()) == 5656

    def test_fills_first_gap(self) -> None:
        """First unused port at or above base is returned."""
        assert PortAllocator().allocate({5656, 5657, 5659}) == 5658

    def test_contiguous_block(self) -> None:
        """A contiguous block is skipped entirely."""
        assert PortAllocator().allocate({5656, 5657, 5658}) == 5659

    def test_ignores_ports_below_base(self) -> None:
        """Ports below base never influence the result."""
        assert PortAllocator().allocate({22, 80, 5000}) == 5656

    def test_deterministic(self) -> None:
        """Same input always yields the same port."""
        allocator = PortAllocator()
        used = {5656, 5658}
        assert allocator.allocate(used) == allocator.allocate(used) == 5657

    def test_custom_base(self) -> None:
        """Base comes from configuration."""
        assert PortAllocator(base=7000, max_port=7010).allocate({7000}) == 7001

    def test_exhausted_raises(self) -> None:
        """Every port up to max taken -> AllocationExhaustedError."""
        allocator = PortAllocator(base=7000, max_port=7002)
        with pytest.raises(AllocationExhaustedError):
            allocator.allocate({7000, 7001, 7002})

    def test_last_port_is_allocatable(self) -> None:
        """max_port itself can be handed out."""
        allocator = PortAllocator(base=7000, max_port=7002)
        assert allocator.allocate({7000, 7001}) == 7002

    def test_base_above_max_rejected(self) -> None:
        """Invalid range is rejected at construction."""
        with pytest.raises(ValueError):
            PortAllocator(base=8000, max_port=7000)
