"""Per-key FIFO serialization.

Work for one post ID runs strictly in submission order; work for different
post IDs never waits on each other.
"""

import threading
from collections.abc import Hashable
from dataclasses import dataclass, field


@dataclass
class _Lane:
    issued: int = 0  # next ticket number to hand out
    serving: int = 0  # ticket whose turn it is
    abandoned: set[int] = field(default_factory=set)


class Ticket:
    """
    A place in one key's queue. Use as a context manager to wait for the
    turn; call release() (idempotent) when done or when giving up early.
    """

    def __init__(self, serializer: "KeyedSerializer", key: Hashable, number: int):
        self.serializer = serializer
        self.key = key
        self.number = number
        self.released = False

    def wait(self, timeout: float | None = None) -> bool:
        return self.serializer._wait(self, timeout)

    def release(self) -> None:
        if not self.released:
            self.released = True
            self.serializer._release(self)

    def __enter__(self) -> "Ticket":
        self.wait()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class KeyedSerializer:
    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._lanes: dict[Hashable, _Lane] = {}

    def reserve(self, key: Hashable) -> Ticket:
        """Take the next place in key's queue (submission order)."""
        with self._cond:
            lane = self._lanes.setdefault(key, _Lane())
            number = lane.issued
            lane.issued += 1
            return Ticket(self, key, number)

    def pending(self, key: Hashable) -> int:
        """Number of tickets for key not yet released."""
        with self._cond:
            lane = self._lanes.get(key)
            if lane is None:
                return 0
            return lane.issued - lane.serving - len(lane.abandoned)

    def _wait(self, ticket: Ticket, timeout: float | None) -> bool:
        with self._cond:
            lane = self._lanes[ticket.key]
            return self._cond.wait_for(lambda: lane.serving == ticket.number, timeout)

    def _release(self, ticket: Ticket) -> None:
        with self._cond:
            lane = self._lanes[ticket.key]
            if ticket.number == lane.serving:
                lane.serving += 1
                while lane.serving in lane.abandoned:
                    lane.abandoned.discard(lane.serving)
                    lane.serving += 1
            else:
                # Gave up before its turn came
                lane.abandoned.add(ticket.number)

            if lane.serving == lane.issued:
                del self._lanes[ticket.key]
            self._cond.notify_all()
