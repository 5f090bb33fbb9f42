"""
Error taxonomy shared by the aggregator, adapters and passport ledger.

  InvalidQuery         — malformed input; rejected before any upstream call.
  ProviderUnavailable  — one upstream failed; absorbed into an empty page.
  LedgerConflict       — concurrent passport write detected; retried once.
  PassportStoreError   — the passport store could not be read or written.
"""


class InvalidQuery(ValueError):
    """Raised for malformed coordinates, limits, radii or readings."""

    pass


class ProviderUnavailable(Exception):
    """Raised inside an adapter on timeout, non-2xx status or bad payload."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class LedgerConflict(Exception):
    """Raised when a passport commit loses an optimistic-concurrency race."""

    def __init__(self, user_key: str):
        super().__init__(f"Concurrent passport update for user {user_key!r}")
        self.user_key = user_key


class PassportStoreError(Exception):
    """Raised when the backing store fails for reasons other than a conflict."""

    pass
