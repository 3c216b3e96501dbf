"""
rpgf/models.py: Typed aggregates returned by the repositories.

Services never hand ORM rows across a transaction boundary. Repositories in
rpgf.storage.repositories map rows onto these dataclasses instead.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class RoundPhase(str, enum.Enum):
    """Lifecycle phase of a round, derived from the clock on every access."""

    DRAFT = "draft"
    UPCOMING = "upcoming"
    INTAKE = "intake"
    VOTING = "voting"
    RESULTS = "results"
    CLOSED = "closed"


class ResultCalculationMethod(str, enum.Enum):
    MEDIAN = "median"
    AVG = "avg"
    SUM = "sum"


class AuditLogAction(str, enum.Enum):
    """Kinds of entries written to a round's audit log."""

    ROUND_CREATED = "round_created"
    ROUND_SETTINGS_CHANGED = "round_settings_changed"
    ROUND_VOTERS_CHANGED = "round_voters_changed"
    ROUND_PUBLISHED = "round_published"
    ROUND_PHASE_FORCED = "round_phase_forced"

    BALLOT_SUBMITTED = "ballot_submitted"
    BALLOT_UPDATED = "ballot_updated"

    CUSTOM_DATASET_CREATED = "custom_dataset_created"
    CUSTOM_DATASET_UPLOADED = "custom_dataset_uploaded"
    CUSTOM_DATASET_UPDATED = "custom_dataset_updated"
    CUSTOM_DATASET_DELETED = "custom_dataset_deleted"

    RESULTS_CALCULATED = "results_calculated"
    RESULTS_PUBLISHED = "results_published"


class AuditLogActorType(str, enum.Enum):
    USER = "user"
    SYSTEM = "system"


@dataclass(frozen=True)
class Identity:
    """An already-authenticated caller, as handed over by the auth layer."""

    user_id: str
    wallet_address: str


@dataclass(frozen=True)
class RoundSchedule:
    """
    The five period boundaries of a round.

    Invariant (checked by rpgf.rounds.clock.validate_schedule):
        application_period_start < application_period_end
            <= voting_period_start < voting_period_end <= results_period_start
    """

    application_period_start: datetime
    application_period_end: datetime
    voting_period_start: datetime
    voting_period_end: datetime
    results_period_start: datetime


@dataclass(frozen=True)
class VotingConfig:
    """
    Per-round ballot limits.

    Fields:
        max_votes_per_voter:             Max number of entries on one ballot.
        max_votes_per_project_per_voter: Upper bound on any single entry.
        allowed_voter_count:             Optional cap on roster size.
        min_votes_per_project_per_voter: Optional lower bound on positive entries.
    """

    max_votes_per_voter: int
    max_votes_per_project_per_voter: float
    allowed_voter_count: Optional[int] = None
    min_votes_per_project_per_voter: Optional[float] = None


@dataclass
class Round:
    id: str
    slug: str
    name: Optional[str]
    published: bool
    schedule: Optional[RoundSchedule]
    voting_config: Optional[VotingConfig]
    admin_user_ids: frozenset = field(default_factory=frozenset)
    admin_wallet_addresses: frozenset = field(default_factory=frozenset)
    phase_override: Optional[RoundPhase] = None
    results_calculated: bool = False
    results_published: bool = False
    results_method: Optional[str] = None

    def is_admin(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id in self.admin_user_ids


@dataclass(frozen=True)
class RoundVoter:
    user_id: str
    wallet_address: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.user_id, "walletAddress": self.wallet_address}


@dataclass
class Ballot:
    id: str
    round_id: str
    voter_user_id: str
    votes: dict[str, float]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "roundId": self.round_id,
            "voterUserId": self.voter_user_id,
            "ballot": dict(self.votes),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class BallotStats:
    number_of_voters: int
    number_of_ballots: int


@dataclass
class Application:
    """External entity; the core only checks existence and groups by round."""

    id: str
    round_id: str
    project_name: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "roundId": self.round_id,
            "projectName": self.project_name,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class CustomDataset:
    id: str
    round_id: str
    name: str
    is_public: bool
    fields: list[str]
    row_count: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "roundId": self.round_id,
            "name": self.name,
            "isPublic": self.is_public,
            "fields": list(self.fields),
            "rowCount": self.row_count,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class CustomDatasetValues:
    """The values one dataset holds for one application (empty if no row)."""

    dataset_id: str
    dataset_name: str
    values: dict[str, str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "datasetId": self.dataset_id,
            "datasetName": self.dataset_name,
            "values": dict(self.values),
        }


@dataclass(frozen=True)
class RoundResult:
    application_id: str
    score: float
    method: str

    def to_dict(self) -> dict[str, Any]:
        return {"applicationId": self.application_id, "score": self.score, "method": self.method}


@dataclass
class AuditLog:
    """One audit entry. user_id and wallet_address are None for system actors."""

    id: int
    round_id: str
    action: AuditLogAction
    actor_type: AuditLogActorType
    user_id: Optional[str]
    wallet_address: Optional[str]
    payload: Any
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        actor: dict[str, Any] = {"type": self.actor_type.value}
        if self.actor_type == AuditLogActorType.USER:
            actor.update(userId=self.user_id, walletAddress=self.wallet_address)
        return {
            "id": self.id,
            "action": self.action.value,
            "actor": actor,
            "payload": self.payload,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class AuditLogPage:
    """A page of entries, newest first; `next` is the cursor for the following page."""

    logs: list[AuditLog]
    next: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"logs": [log.to_dict() for log in self.logs], "next": self.next}
