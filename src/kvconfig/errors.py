"""
Error types raised by kvconfig.

Taxonomy:
- ConfigNotFoundError: a required key has no data on the initial load.
- KVProtocolError: the store answered with an unexpected status or body.
- KVTransportError: the store could not be reached (timeouts, connection errors).
- FlatteningError: a payload could not be turned into configuration keys.
  DuplicateKeyError and EmptyKeyError are the specific cases.

A "not found" answer from the store is not an error; it is reported as a
QueryResult with status NOT_FOUND. Cancellation is not an error either and
never reaches the exception hooks.
"""


class KVConfigError(Exception):
    """Base class for all kvconfig errors."""

    pass


class ConfigNotFoundError(KVConfigError):
    """Raised when a required key is missing from the store on the initial load."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"The configuration for key {key} was not found and is not optional.")


class KVProtocolError(KVConfigError):
    """Raised when the store returns an unexpected status code or an undecodable body."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class KVTransportError(KVConfigError):
    """Raised when the store cannot be reached."""

    pass


class FlatteningError(KVConfigError):
    """Raised when a payload cannot be flattened into configuration keys."""

    pass


class DuplicateKeyError(FlatteningError):
    """Raised when two values normalize to the same configuration key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Key {key} is duplicated")


class EmptyKeyError(FlatteningError):
    """Raised when a flattened value would end up with no key at all."""

    def __init__(self) -> None:
        super().__init__(
            "The key must not be null or empty. Ensure that there is at least one key "
            "under the root of the config or that the data there contains more than "
            "just a single value."
        )


class OperationCancelledError(KVConfigError):
    """Raised inside the watch machinery when the cancellation token fires.

    Never routed to the exception hooks.
    """

    pass
