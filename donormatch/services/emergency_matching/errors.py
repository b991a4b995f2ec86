"""
Emergency Matching Errors.

Provider errors are recovered inside the ranking pipeline; candidate and
persistence errors surface to the orchestrator, which degrades instead of raising.
"""


class EmergencyMatchingError(Exception):
    """Base class for emergency matching failures."""
    pass


class ProviderUnavailable(EmergencyMatchingError):
    """Ranking provider could not be reached (network, HTTP status, timeout, open circuit)."""
    pass


class ProviderParseError(EmergencyMatchingError):
    """Ranking provider answered with a payload that does not hold a usable ranking."""
    pass


class CandidateFetchFailure(EmergencyMatchingError):
    """Compatible donor search failed."""
    pass


class PersistenceError(EmergencyMatchingError):
    """Match records could not be written or read."""
    pass


class NotificationDeliveryError(EmergencyMatchingError):
    """A single donor notification could not be delivered."""

    def __init__(self, donor_id: str, message: str):
        super().__init__(f"Delivery to donor {donor_id} failed: {message}")
        self.donor_id = donor_id


class ResponseAlreadyRecorded(EmergencyMatchingError):
    """Donor response was already set for this match."""

    def __init__(self, match_id: str, current: str):
        super().__init__(f"Match {match_id} already has response '{current}'")
        self.match_id = match_id
        self.current = current


class MatchNotFound(EmergencyMatchingError):
    """No match record with the given id."""
    pass


class StreamDisconnected(EmergencyMatchingError):
    """Match update stream dropped; subscribers may resubscribe."""
    pass
