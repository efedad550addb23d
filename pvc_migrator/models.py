"""Data model for a single migration run."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

from .errors import ValidationError

DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
QUANTITY = re.compile(r"^[0-9]+(\.[0-9]+)?(Ki|Mi|Gi|Ti|Pi|Ei|k|M|G|T|P|E)?$")

DEFAULT_MIGRATOR = "pvc-migrator"


class Backing(str, Enum):
    ORIGINAL = "original"
    TEMP = "temp"
    NEW = "new"


class ScaleState(str, Enum):
    UP = "up"
    DOWN = "down"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    ABORTED = "aborted"


@dataclass(frozen=True)
class MigrationRequest:
    host_workload: str
    volume_name: str
    new_volume_class: str
    new_volume_size: str
    migrator_workload: str = DEFAULT_MIGRATOR

    @property
    def temp_volume_name(self):
        return f"{self.volume_name}-tmp"

    def validate(self):
        """Raise ValidationError unless every field is present and well formed."""
        fields = {
            "host workload": self.host_workload,
            "migrator workload": self.migrator_workload,
            "volume name": self.volume_name,
            "volume class": self.new_volume_class,
            "volume size": self.new_volume_size,
        }
        missing = [label for label, value in fields.items() if not value]
        if missing:
            raise ValidationError(f"missing {', '.join(missing)}")

        for label in ("host workload", "migrator workload", "volume name"):
            if not DNS_LABEL.match(fields[label]):
                raise ValidationError(f"{label} '{fields[label]}' is not a valid Kubernetes name")
        # temp name must also fit in a 63 char label
        if len(self.temp_volume_name) > 63:
            raise ValidationError(f"volume name '{self.volume_name}' is too long to derive a temporary name")
        if self.host_workload == self.migrator_workload:
            raise ValidationError("host and migrator workloads must differ")
        if not QUANTITY.match(self.new_volume_size):
            raise ValidationError(f"volume size '{self.new_volume_size}' is not a storage quantity (e.g. 5Gi)")
        return self


@dataclass
class MigrationStep:
    """One statically ordered unit of work.

    ``action``, ``precondition`` and ``postcondition`` take the RunState.
    Conditions raise on failure; the waiter's ConvergenceTimeout is the
    usual way a postcondition fails.
    """

    number: int
    name: str
    description: str
    action: Callable
    precondition: Optional[Callable] = None
    postcondition: Optional[Callable] = None
    destructive: bool = False


@dataclass
class RunState:
    request: MigrationRequest
    completed: int = 0
    status: RunStatus = RunStatus.RUNNING
    bindings: Dict[str, Backing] = field(default_factory=dict)
    scale: Dict[str, ScaleState] = field(default_factory=dict)
    host_replicas: Optional[int] = None
    copy_acknowledged: bool = False
    failed_step: Optional[str] = None
    failure: Optional[str] = None

    @classmethod
    def start(cls, request, host_replicas=None):
        return cls(
            request=request,
            bindings={request.volume_name: Backing.ORIGINAL},
            scale={"host": ScaleState.UP, "migrator": ScaleState.DOWN},
            host_replicas=host_replicas,
        )
