"""
Error taxonomy for the scoring and standings core.

Every error carries a machine-readable ``code``, a human-readable ``message``
and the HTTP status the request layer should answer with.
"""


class TipsterError(Exception):
    """Base class for all core errors"""

    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, message=None, **details):
        self.message = message or self.__class__.__doc__ or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        data = {"success": False, "error": self.code, "message": self.message}
        if self.retryable:
            data["retryable"] = True
        if self.details:
            data["details"] = self.details
        return data


# Validation: rejected immediately, never retried
class ValidationError(TipsterError):
    code = "validation_error"
    status_code = 400


class MalformedPayload(ValidationError):
    """Submission payload is empty or malformed"""

    code = "malformed_payload"


class CrossRoundSubmission(ValidationError):
    """Submitted fixtures belong to more than one betting round"""

    code = "cross_round_submission"


class UnknownFixture(ValidationError):
    """One or more submitted fixtures do not exist"""

    code = "unknown_fixture"


class Unauthenticated(TipsterError):
    """Authentication required"""

    code = "unauthenticated"
    status_code = 401


class Forbidden(TipsterError):
    """Not allowed to perform this operation"""

    code = "forbidden"
    status_code = 403


class NotFound(TipsterError):
    code = "not_found"
    status_code = 404


# State: a no-op rejection, never a crash
class StateError(TipsterError):
    code = "invalid_state"
    status_code = 409


class RoundNotOpen(StateError):
    """Betting round is not open for submissions"""

    code = "round_not_open"
    status_code = 403


class DeadlinePassed(StateError):
    """Submission deadline has passed"""

    code = "deadline_passed"
    status_code = 403


class InvalidStatusTransition(StateError):
    code = "invalid_status_transition"


class DeadlineLocked(StateError):
    """Deadline cannot change once bets exist for the round"""

    code = "deadline_locked"


class SeasonNotEligible(StateError):
    code = "season_not_eligible"


# Data integrity: server-side configuration errors
class DataIntegrityError(TipsterError):
    code = "data_integrity_error"
    status_code = 500


class FixtureNotLinked(DataIntegrityError):
    """Fixture is not linked to any betting round"""

    code = "fixture_not_linked"


class MissingDeadline(DataIntegrityError):
    """Round deadline not configured"""

    code = "missing_deadline"


class DatastoreTimeout(TipsterError):
    """Datastore call timed out"""

    code = "datastore_timeout"
    status_code = 503
    retryable = True
