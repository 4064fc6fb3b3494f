"""Error taxonomy for the interview core.

LLM failures live in :mod:`journey_mapper.llm.exceptions`.
"""


class JourneyMapperError(Exception):
    """Base exception for the journey mapper."""

    pass


class ValidationError(JourneyMapperError):
    """Malformed caller input."""

    pass


class SessionClosedError(ValidationError):
    """Operation attempted on a closed interview session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is closed")


class NotFoundError(JourneyMapperError):
    """A session, SME or knowledge record does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class UnauthorizedError(JourneyMapperError):
    """A self-service token could not be verified."""

    pass


class ForbiddenError(JourneyMapperError):
    """A verified caller tried to touch a session it does not own."""

    pass


class AllocationError(JourneyMapperError):
    """Base exception for identifier allocation."""

    def __init__(self, message: str, prefix: str):
        self.prefix = prefix
        super().__init__(message)


class CounterNotSeededError(AllocationError):
    """No counter row exists for the requested prefix."""

    def __init__(self, prefix: str):
        super().__init__(
            f"Counter not found for prefix: {prefix}. Run 'journey-mapper init-db' first.",
            prefix,
        )


class AllocationExhaustedError(AllocationError):
    """Optimistic counter increment kept losing to concurrent writers."""

    def __init__(self, prefix: str, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Failed to generate ID for {prefix} after {attempts} attempts", prefix
        )
