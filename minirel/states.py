from enum import Enum, auto


class ObjectState(Enum):
    """Record lifecycle. Embedded items count as persistent once their owner holds them."""

    TRANSIENT = auto()
    PERSISTENT = auto()
    DELETED = auto()
