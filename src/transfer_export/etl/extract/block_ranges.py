"""
Block range scheduling.

Two granularities:
- next_range(): how far the checkpoint moves in one iteration (batch_size, 10k blocks)
- block_windows(): how that range is cut for eth_getLogs (provider cap, 1000 blocks)
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple


@dataclass(frozen=True)
class BlockRange:
    """Inclusive [from_block, to_block] interval."""
    from_block: int
    to_block: int

    def __post_init__(self):
        if self.from_block > self.to_block:
            raise ValueError(f"Invalid block range {self.from_block}-{self.to_block}")

    @property
    def width(self) -> int:
        return self.to_block - self.from_block + 1

    def __str__(self):
        return f"{self.from_block}-{self.to_block}"


def next_range(checkpoint: int, chain_tip: int, max_batch_width: int) -> Optional[BlockRange]:
    """
    Next range to process, or None when the checkpoint has caught up with the tip.

    Example:
        next_range(100, 5000, 1000) -> BlockRange(100, 1100)
        next_range(100, 100, 1000)  -> None
    """
    if max_batch_width < 1:
        raise ValueError(f"max_batch_width must be >= 1, got {max_batch_width}")

    if checkpoint >= chain_tip:
        return None

    return BlockRange(checkpoint, min(checkpoint + max_batch_width, chain_tip))


def block_windows(from_block: int, to_block: int, step: int = 1000) -> Iterator[Tuple[int, int]]:
    """
    Cut an inclusive range into windows of at most `step` blocks.

    block_windows(100, 2100, 1000) -> (100, 1099), (1100, 2099), (2100, 2100)
    """
    if step < 1:
        raise ValueError(f"step must be >= 1, got {step}")

    current = from_block
    while current <= to_block:
        window_end = min(current + step - 1, to_block)
        yield current, window_end
        current = window_end + 1
