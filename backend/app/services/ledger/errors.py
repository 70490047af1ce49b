"""No-show ledger service errors."""


class LedgerServiceError(Exception):
    """Raised when a ledger service operation fails."""
    pass


class InputUnavailableError(LedgerServiceError):
    """Raised when the surveys or roster for a match cannot be read."""

    def __init__(self, match_id: str, message: str):
        self.match_id = match_id
        super().__init__(f"Inputs unavailable for match {match_id}: {message}")
