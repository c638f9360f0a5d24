"""
Descriptor Table

Fixed-capacity registry of open connections. The slot index is the descriptor
id handed to the guest. Each slot also carries a generation counter that is
bumped on release, so a SlotHandle taken from an earlier connection can never
reach a newer connection that happens to reuse the same index.
"""

import socket
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Union

from .config import DEFAULT_MAX_FDS


class SlotHandle(NamedTuple):
    """Descriptor id plus the generation of the slot when it was opened."""

    index: int
    generation: int


Descriptor = Union[int, SlotHandle]


@dataclass
class DescriptorSlot:
    in_use: bool = False
    handle: Optional[socket.socket] = None
    generation: int = 0


class DescriptorTable:
    """Fixed-size array of descriptor slots."""

    def __init__(self, capacity: int = DEFAULT_MAX_FDS):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._slots: List[DescriptorSlot] = [
            DescriptorSlot() for _ in range(capacity)
        ]

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def __len__(self) -> int:
        return sum(1 for slot in self._slots if slot.in_use)

    def has_free(self) -> bool:
        return any(not slot.in_use for slot in self._slots)

    def allocate(self, handle: socket.socket) -> Optional[SlotHandle]:
        """Store a connected socket in the first free slot.

        Returns the slot handle, or None if every slot is taken.
        """
        for index, slot in enumerate(self._slots):
            if not slot.in_use:
                slot.in_use = True
                slot.handle = handle
                return SlotHandle(index, slot.generation)
        return None

    def _resolve(self, fd: Descriptor) -> Optional[int]:
        """Index of the live slot fd refers to, or None."""
        if isinstance(fd, SlotHandle):
            index, generation = fd
        elif isinstance(fd, int) and not isinstance(fd, bool):
            index, generation = fd, None
        else:
            return None

        if index < 0 or index >= len(self._slots):
            return None
        slot = self._slots[index]
        if not slot.in_use:
            return None
        if generation is not None and generation != slot.generation:
            return None
        return index

    def lookup(self, fd: Descriptor) -> Optional[socket.socket]:
        """Socket for a live descriptor, or None if fd is invalid or stale."""
        index = self._resolve(fd)
        return None if index is None else self._slots[index].handle

    def handle_for(self, fd: Descriptor) -> Optional[SlotHandle]:
        """Current SlotHandle for a live descriptor."""
        index = self._resolve(fd)
        if index is None:
            return None
        return SlotHandle(index, self._slots[index].generation)

    def release(self, fd: Descriptor) -> Optional[socket.socket]:
        """Free a live slot and return the socket it owned.

        The caller is responsible for closing the returned socket.
        """
        index = self._resolve(fd)
        if index is None:
            return None
        slot = self._slots[index]
        handle = slot.handle
        slot.in_use = False
        slot.handle = None
        slot.generation += 1
        return handle

    def live(self) -> List[SlotHandle]:
        return [
            SlotHandle(index, slot.generation)
            for index, slot in enumerate(self._slots)
            if slot.in_use
        ]
