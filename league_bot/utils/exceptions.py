"""
League operation exceptions with user-friendly error messages.
"""

class LeagueOperationError(Exception):
    """Base exception for league engine errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class ValidationError(LeagueOperationError):
    """Raised when command input is rejected before any state changes."""
    pass

class MatchStateError(LeagueOperationError):
    """Raised when a match is in the wrong state for an operation."""
    def __init__(self, match_id: int, current: str, target: str = None, user_message: str = None):
        detail = f" -> {target}" if target else ""
        super().__init__(
            f"Match {match_id} cannot transition from {current}{detail}",
            user_message or f"❌ Match {match_id} is {current}; that action is not allowed."
        )
        self.match_id = match_id
        self.current = current
        self.target = target

class ClaimConflictError(LeagueOperationError):
    """Raised when a fixture was claimed by someone else first."""
    def __init__(self, fixture_id: int = None, reason: str = "already claimed"):
        super().__init__(
            f"Fixture {fixture_id} claim failed: {reason}",
            "❌ That fixture was just taken by another match. Please try again."
        )
        self.fixture_id = fixture_id

class OverrideOwnershipError(LeagueOperationError):
    """Raised when an admin touches an override another admin owns."""
    def __init__(self, match_id: int, owner_id: int):
        super().__init__(
            f"Override on match {match_id} is owned by {owner_id}",
            f"❌ Another admin (<@{owner_id}>) is already overriding this match."
        )
        self.match_id = match_id
        self.owner_id = owner_id

class IntegrityViolationError(LeagueOperationError):
    """Raised when persisted data breaks an engine invariant."""
    def __init__(self, message: str):
        super().__init__(message, "❌ League data is inconsistent. An admin has been notified in the logs.")

class DeliveryError(Exception):
    """Raised by message delivery collaborators when Discord rejects a send."""
    pass
