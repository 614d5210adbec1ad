"""Random per-process worker identity"""

import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class WorkerIdentity:
    """Canonical UUID4 string labelling one worker process"""
    value: str

    @classmethod
    def generate(cls) -> "WorkerIdentity":
        return cls(str(uuid.uuid4()))

    def __str__(self) -> str:
        return self.value
