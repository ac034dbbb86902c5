"""Generate document-store compatible identifiers on the relational side.

Layout (24 hex chars): 8 timestamp (seconds) + 10 random + 6 counter.
Ids are written to ``ref_id`` when a record is created so the reverse sync
can reuse them as the target ``_id`` without a lookup table.
"""
from __future__ import annotations

import os
import random
import re
import threading
import time

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

COUNTER_MODULUS = 1 << 24


class ObjectIdGenerator:
    """Process-scoped id source.

    The counter is seeded randomly when the generator is created (once per
    process for the module-level instance), increments per id and wraps at
    2**24.
    """

    def __init__(self, seed: int | None = None):
        self._counter = random.randrange(COUNTER_MODULUS) if seed is None else seed % COUNTER_MODULUS
        self._lock = threading.Lock()

    def next_counter(self) -> int:
        with self._lock:
            self._counter = (self._counter + 1) % COUNTER_MODULUS
            return self._counter

    def generate(self, timestamp: float | None = None) -> str:
        ts = int(time.time() if timestamp is None else timestamp) & 0xFFFFFFFF
        return f"{ts:08x}{os.urandom(5).hex()}{self.next_counter():06x}"


_generator = ObjectIdGenerator()


def generate_object_id() -> str:
    return _generator.generate()


def is_object_id(value) -> bool:
    return isinstance(value, str) and bool(_OBJECT_ID_RE.match(value))
