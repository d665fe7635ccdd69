class BeaconAggregatorError(Exception):
    """Base class for aggregator failures."""


class BeaconParseError(BeaconAggregatorError):
    """A log line carried a beacon that cannot be turned into a hit."""

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class LogSourceUnavailableError(BeaconAggregatorError):
    """The access log could not be opened."""


class LogReadError(BeaconAggregatorError):
    """The access log kept failing to read."""


class StoreUnavailableError(BeaconAggregatorError):
    """The aggregate store could not be reached at startup."""


class CorruptAggregateError(BeaconAggregatorError):
    """A stored aggregate value is not a decimal number."""

    def __init__(self, key: str, value: str):
        super().__init__(f"non-decimal value {value!r} stored at {key}")
        self.key = key
        self.value = value
