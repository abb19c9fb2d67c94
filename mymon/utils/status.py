"""Replication role and liveness state of a monitored instance."""

import time
from dataclasses import dataclass, field
from enum import Enum


class Role(Enum):
    """Replication role resolved from the read-only flag and slave status."""

    MASTER = "master"
    SLAVE = "slave"
    READ_ONLY_UNKNOWN = "read-only-unknown"

    @classmethod
    def resolve(cls, is_slave: bool, read_only: bool) -> "Role":
        """
        Derive the role from the first two pipeline steps.

        Args:
            is_slave: Whether SHOW SLAVE STATUS returned a row
            read_only: Value of @@GLOBAL.read_only

        Returns:
            Role: SLAVE if replicating, READ_ONLY_UNKNOWN for a read-only
            instance without replication, MASTER otherwise
        """
        if is_slave:
            return cls.SLAVE
        if read_only:
            return cls.READ_ONLY_UNKNOWN
        return cls.MASTER


@dataclass(frozen=True)
class LivenessState:
    """Up/down and role of one target for one tick."""

    target_key: str
    alive: bool
    role: Role = Role.READ_ONLY_UNKNOWN
    read_only: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_emoji(self) -> str:
        """Short marker used in log lines."""
        return "🟢" if self.alive else "🔴"
