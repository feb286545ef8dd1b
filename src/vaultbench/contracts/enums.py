"""Status codes and modes shared across subsystem boundaries."""

from enum import StrEnum


class Operation(StrEnum):
    """Vault operation requested for a batch."""

    TOKENIZE = "tokenize"
    DETOKENIZE = "detokenize"


class SubBatchState(StrEnum):
    """Lifecycle of a single sub-batch call.

    pending -> in_flight -> succeeded
                         -> retrying -> succeeded | failed
                         -> failed

    SUCCEEDED and FAILED are terminal.
    """

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SubBatchState.SUCCEEDED, SubBatchState.FAILED)


class HandlerMode(StrEnum):
    """Whether the adapter talks to a real vault or answers locally."""

    LIVE = "live"
    MOCK = "mock"
