"""Error taxonomy shared by the indexing jobs."""


class IndexerError(Exception):
    """Base class for indexer failures."""


class ConfigurationError(IndexerError):
    """Missing adapter, deployment, collateral config or an invalid block range.

    Fatal for the affected protocol/chain/batch only.
    """


class RemoteReadError(IndexerError):
    """A chain RPC or explorer read failed."""


class RetryExhaustedError(RemoteReadError):
    """A remote read kept failing after every attempt of its retry policy."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
