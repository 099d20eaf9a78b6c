"""Translation between provider statuses and persisted job states.

Providers report one of ``starting | processing | succeeded | failed |
canceled``.  Adapters convert the raw string to ``ProviderState`` as soon as
a response is decoded; nothing downstream compares raw strings.
"""

from enum import Enum

from vibephoto.models.job import JobKind, JobState, TERMINAL_STATES


class ProviderState(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    # Anything a provider introduces without warning
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: "str | ProviderState | None") -> "ProviderState":
        if isinstance(raw, ProviderState):
            return raw
        if not raw:
            return cls.UNKNOWN
        value = str(raw).strip().lower()
        if value == "cancelled":
            return cls.CANCELED
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


_IMAGE_MAP: dict[ProviderState, JobState] = {
    ProviderState.STARTING: JobState.PROCESSING,
    ProviderState.PROCESSING: JobState.PROCESSING,
    ProviderState.SUCCEEDED: JobState.COMPLETED,
    ProviderState.FAILED: JobState.FAILED,
    ProviderState.CANCELED: JobState.CANCELLED,
    ProviderState.UNKNOWN: JobState.PROCESSING,
}

_VIDEO_MAP: dict[ProviderState, JobState] = {
    ProviderState.STARTING: JobState.STARTING,
    ProviderState.PROCESSING: JobState.PROCESSING,
    ProviderState.SUCCEEDED: JobState.COMPLETED,
    ProviderState.FAILED: JobState.FAILED,
    ProviderState.CANCELED: JobState.CANCELLED,
    ProviderState.UNKNOWN: JobState.STARTING,
}

_REVERSE_MAP: dict[JobState, ProviderState] = {
    JobState.PENDING: ProviderState.PROCESSING,
    JobState.STARTING: ProviderState.STARTING,
    JobState.PROCESSING: ProviderState.PROCESSING,
    JobState.COMPLETED: ProviderState.SUCCEEDED,
    JobState.FAILED: ProviderState.FAILED,
    JobState.CANCELLED: ProviderState.CANCELED,
}


def map_provider_status(
    kind: JobKind | str, provider_status: "ProviderState | str | None"
) -> JobState:
    """Map a provider status onto the job state machine for ``kind``.

    Total: unknown statuses fall back to PROCESSING for image/upscale jobs and
    STARTING for video jobs.
    """
    state = ProviderState.parse(provider_status)
    table = _VIDEO_MAP if JobKind(kind) is JobKind.VIDEO else _IMAGE_MAP
    return table[state]


def to_provider_status(state: JobState | str) -> ProviderState:
    """Reverse mapping used when echoing a job back to API clients."""
    return _REVERSE_MAP[JobState(state)]


def _as_state(value: "ProviderState | JobState | str") -> "ProviderState | JobState":
    if isinstance(value, (ProviderState, JobState)):
        return value
    try:
        return JobState(value)
    except ValueError:
        return ProviderState.parse(value)


def is_terminal_success(value: "ProviderState | JobState | str") -> bool:
    return _as_state(value) in (ProviderState.SUCCEEDED, JobState.COMPLETED)


def is_terminal_failure(value: "ProviderState | JobState | str") -> bool:
    return _as_state(value) in (
        ProviderState.FAILED,
        ProviderState.CANCELED,
        JobState.FAILED,
        JobState.CANCELLED,
    )


def is_terminal(value: "ProviderState | JobState | str") -> bool:
    state = _as_state(value)
    if isinstance(state, JobState):
        return state in TERMINAL_STATES
    return is_terminal_success(state) or is_terminal_failure(state)


def is_in_flight(value: "ProviderState | JobState | str") -> bool:
    return not is_terminal(value)
