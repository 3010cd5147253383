from enum import Enum


class SessionState(str, Enum):
    INIT = "init"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionMode(str, Enum):
    LIVE = "live"
    TEST = "test"
