"""
Result objects returned by core operations.

Every result can say whether it was a full success (200), a partial success
(207) or a failure, and renders itself to a JSON-ready dict.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

HTTP_OK = 200
HTTP_MULTI_STATUS = 207
HTTP_SERVER_ERROR = 500


def batch_status_code(succeeded, errors):
    """200 when nothing failed, 207 when some units failed, 500 when all did"""
    if not errors:
        return HTTP_OK
    if succeeded:
        return HTTP_MULTI_STATUS
    return HTTP_SERVER_ERROR


@dataclass
class OperationResult:
    """Outcome of a single-unit operation"""

    success: bool
    message: str
    payload: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None
    status: int = HTTP_OK

    @classmethod
    def ok(cls, message, payload=None):
        return cls(success=True, message=message, payload=payload or {})

    @classmethod
    def failure(cls, error, payload=None):
        """Build a failed result from a TipsterError"""
        return cls(
            success=False,
            message=error.message,
            payload=payload,
            error_code=error.code,
            status=error.status_code,
        )

    @property
    def status_code(self):
        return self.status

    def to_dict(self):
        data = {"success": self.success, "message": self.message}
        if self.payload is not None:
            data.update(self.payload)
        if self.error_code:
            data["error"] = self.error_code
        return data


@dataclass
class BatchResult:
    """Outcome of an operation over many rounds, users or seasons"""

    operation: str
    processed: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self):
        return not self.errors

    @property
    def error_count(self):
        return len(self.errors)

    @property
    def status_code(self):
        return batch_status_code(self.processed or self.skipped, self.errors)

    @property
    def message(self):
        text = (
            f"{self.operation}: {len(self.processed)} processed, "
            f"{len(self.skipped)} skipped, {self.error_count} failed"
        )
        return text

    def to_dict(self):
        return {
            "success": self.success,
            "message": self.message,
            "processed_count": len(self.processed),
            "skipped_count": len(self.skipped),
            "error_count": self.error_count,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class RoundAward:
    """Retroactive points awarded, or that would be awarded, for one round"""

    round_id: int
    round_name: str
    points_awarded: int
    minimum_participant_score: int
    participant_count: int


@dataclass
class RetroactivePointsResult:
    user_id: int
    competition_id: int
    dry_run: bool = False
    rounds: List[RoundAward] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    standings_refreshed: bool = False

    @property
    def rounds_processed(self):
        return len(self.rounds)

    @property
    def total_points_awarded(self):
        return sum(award.points_awarded for award in self.rounds)

    @property
    def success(self):
        return not self.errors

    @property
    def status_code(self):
        return batch_status_code(self.rounds, self.errors)

    @property
    def message(self):
        verb = "Would award" if self.dry_run else "Awarded"
        return (
            f"{verb} {self.total_points_awarded} points across "
            f"{self.rounds_processed} rounds to user {self.user_id}"
        )

    def to_dict(self):
        return {
            "success": self.success,
            "message": self.message,
            "user_id": self.user_id,
            "competition_id": self.competition_id,
            "dry_run": self.dry_run,
            "rounds_processed": self.rounds_processed,
            "total_points_awarded": self.total_points_awarded,
            "rounds": [asdict(award) for award in self.rounds],
            "errors": self.errors,
            "warnings": self.warnings,
            "standings_refreshed": self.standings_refreshed,
        }


@dataclass
class BulkRetroactivePointsResult:
    competition_id: int
    dry_run: bool = False
    user_results: List[RetroactivePointsResult] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    standings_refreshed: bool = False

    @property
    def total_users_processed(self):
        return len(self.user_results)

    @property
    def total_rounds_processed(self):
        return sum(result.rounds_processed for result in self.user_results)

    @property
    def total_points_awarded(self):
        return sum(result.total_points_awarded for result in self.user_results)

    @property
    def all_errors(self):
        errors = list(self.errors)
        for result in self.user_results:
            errors.extend(result.errors)
        return errors

    @property
    def success(self):
        return not self.all_errors

    @property
    def status_code(self):
        succeeded = [result for result in self.user_results if result.rounds]
        return batch_status_code(succeeded or self.user_results, self.all_errors)

    @property
    def message(self):
        verb = "Would award" if self.dry_run else "Awarded"
        return (
            f"{verb} {self.total_points_awarded} points to "
            f"{self.total_users_processed} users"
        )

    def to_dict(self):
        return {
            "success": self.success,
            "message": self.message,
            "competition_id": self.competition_id,
            "dry_run": self.dry_run,
            "total_users_processed": self.total_users_processed,
            "rounds_processed": self.total_rounds_processed,
            "total_points_awarded": self.total_points_awarded,
            "user_results": [result.to_dict() for result in self.user_results],
            "errors": self.all_errors,
            "error_count": len(self.all_errors),
            "standings_refreshed": self.standings_refreshed,
        }
