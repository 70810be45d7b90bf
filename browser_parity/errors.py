"""Error taxonomy shared by the allocator, agents, sessions and comparison engine."""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for all harness errors. ``kind`` is what reports show."""

    kind = "HarnessError"


class ResourceBusy(HarnessError):
    kind = "ResourceBusy"


class ProvisionFailed(HarnessError):
    kind = "ProvisionFailed"


class SessionLost(HarnessError):
    kind = "SessionLost"


class SessionClosed(HarnessError):
    kind = "SessionClosed"


class StaleReference(HarnessError):
    kind = "StaleReference"

    def __init__(self, ref: str, reason: str = "not in current reference table"):
        super().__init__(f"Reference {ref} is stale: {reason}")
        self.ref = ref


class WaitTimeout(HarnessError):
    kind = "WaitTimeout"


class DimensionMismatch(HarnessError):
    kind = "DimensionMismatch"

    def __init__(self, reference_size: tuple[int, int], candidate_size: tuple[int, int]):
        super().__init__(
            f"Image dimensions differ: reference {reference_size[0]}x{reference_size[1]}, "
            f"candidate {candidate_size[0]}x{candidate_size[1]}"
        )
        self.reference_size = reference_size
        self.candidate_size = candidate_size


class SetupError(HarnessError):
    kind = "SetupError"


def error_kind(exc: BaseException) -> str:
    """Return the report kind for any exception."""
    if isinstance(exc, HarnessError):
        return exc.kind
    return type(exc).__name__
