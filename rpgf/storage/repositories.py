"""
rpgf/storage/repositories.py: Repository interfaces over the relational store.

Each repository wraps the Session of the current transaction and returns the
typed aggregates from rpgf.models, never ORM rows. Joins that the services need
("round with admins", "ballots of removed voters", "dataset row per
application") are resolved here, in one place.

Upserts use INSERT ... ON CONFLICT against the table's uniqueness constraint,
which is supported by both PostgreSQL and SQLite.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from rpgf.models import (
    Application,
    AuditLog,
    AuditLogAction,
    AuditLogActorType,
    Ballot,
    CustomDataset,
    Identity,
    Round,
    RoundPhase,
    RoundResult,
    RoundSchedule,
    RoundVoter,
    VotingConfig,
)
from rpgf.rounds.clock import as_utc
from rpgf.storage.schema import (
    ApplicationRecord,
    AuditLogRecord,
    BallotRecord,
    CustomDatasetRecord,
    CustomDatasetRowRecord,
    ResultRecord,
    RoundAdminRecord,
    RoundRecord,
    RoundVoterRecord,
    UserRecord,
    _new_id,
)

logger = logging.getLogger(__name__)


def _dialect_insert(session: Session, model):
    """Return an INSERT construct that supports on_conflict_* for the bound dialect."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


# ── Users ─────────────────────────────────────────────────────────────────────

class UserRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_or_create_by_wallet(self, wallet_address: str, user_id: Optional[str] = None) -> Identity:
        """
        Idempotent upsert keyed by the lowercased wallet address.

        user_id is only used when the wallet is new; an existing user keeps its id.
        """
        wallet = wallet_address.strip().lower()
        stmt = _dialect_insert(self.session, UserRecord).values(
            id=user_id or _new_id(), wallet_address=wallet, created_at=_now()
        )
        self.session.execute(stmt.on_conflict_do_nothing(index_elements=["wallet_address"]))
        user_id = self.session.scalar(
            select(UserRecord.id).where(UserRecord.wallet_address == wallet)
        )
        return Identity(user_id=user_id, wallet_address=wallet)

    def get(self, user_id: str) -> Optional[Identity]:
        record = self.session.get(UserRecord, user_id)
        if record is None:
            return None
        return Identity(user_id=record.id, wallet_address=record.wallet_address)


# ── Rounds ────────────────────────────────────────────────────────────────────

class RoundRepository:
    def __init__(self, session: Session):
        self.session = session

    def _to_round(self, record: RoundRecord) -> Round:
        admins = self.session.execute(
            select(UserRecord.id, UserRecord.wallet_address)
            .join(RoundAdminRecord, RoundAdminRecord.user_id == UserRecord.id)
            .where(RoundAdminRecord.round_id == record.id)
        ).all()

        boundaries = (
            record.application_period_start,
            record.application_period_end,
            record.voting_period_start,
            record.voting_period_end,
            record.results_period_start,
        )
        schedule = None
        if all(b is not None for b in boundaries):
            schedule = RoundSchedule(*(as_utc(b) for b in boundaries))

        voting_config = None
        if record.max_votes_per_voter is not None and record.max_votes_per_project_per_voter is not None:
            voting_config = VotingConfig(
                max_votes_per_voter=record.max_votes_per_voter,
                max_votes_per_project_per_voter=record.max_votes_per_project_per_voter,
                allowed_voter_count=record.allowed_voter_count,
                min_votes_per_project_per_voter=record.min_votes_per_project_per_voter,
            )

        return Round(
            id=record.id,
            slug=record.slug,
            name=record.name,
            published=bool(record.published),
            schedule=schedule,
            voting_config=voting_config,
            admin_user_ids=frozenset(a.id for a in admins),
            admin_wallet_addresses=frozenset(a.wallet_address for a in admins),
            phase_override=RoundPhase(record.phase_override) if record.phase_override else None,
            results_calculated=bool(record.results_calculated),
            results_published=bool(record.results_published),
            results_method=record.results_method,
        )

    def _record(self, round_id: str, for_update: bool = False) -> Optional[RoundRecord]:
        return self.session.get(
            RoundRecord, round_id, with_for_update=for_update, populate_existing=True
        )

    def get(self, round_id: str, for_update: bool = False) -> Optional[Round]:
        """Round with its admins. for_update locks the row until commit."""
        record = self._record(round_id, for_update=for_update)
        return self._to_round(record) if record is not None else None

    def get_by_slug(self, slug: str) -> Optional[Round]:
        record = self.session.scalar(select(RoundRecord).where(RoundRecord.slug == slug))
        return self._to_round(record) if record is not None else None

    def slug_exists(self, slug: str) -> bool:
        return self.session.scalar(
            select(func.count()).select_from(RoundRecord).where(RoundRecord.slug == slug)
        ) > 0

    def add(
        self,
        slug: str,
        name: Optional[str],
        created_by_user_id: str,
        admin_user_ids: Iterable[str],
        schedule: Optional[RoundSchedule],
        voting_config: Optional[VotingConfig],
    ) -> Round:
        record = RoundRecord(
            id=_new_id(),
            slug=slug,
            name=name,
            published=False,
            created_by_user_id=created_by_user_id,
        )
        self.session.add(record)
        self.session.flush()
        for user_id in admin_user_ids:
            self.session.add(RoundAdminRecord(round_id=record.id, user_id=user_id))
        self.session.flush()
        if schedule is not None:
            self.set_schedule(record.id, schedule)
        if voting_config is not None:
            self.set_voting_config(record.id, voting_config)
        return self.get(record.id)

    def is_admin(self, round_id: str, user_id: Optional[str]) -> bool:
        if user_id is None:
            return False
        return self.session.scalar(
            select(func.count())
            .select_from(RoundAdminRecord)
            .where(RoundAdminRecord.round_id == round_id, RoundAdminRecord.user_id == user_id)
        ) > 0

    def _update(self, round_id: str, **values) -> None:
        values["updated_at"] = _now()
        self.session.execute(update(RoundRecord).where(RoundRecord.id == round_id).values(**values))

    def set_schedule(self, round_id: str, schedule: RoundSchedule) -> None:
        self._update(
            round_id,
            application_period_start=schedule.application_period_start,
            application_period_end=schedule.application_period_end,
            voting_period_start=schedule.voting_period_start,
            voting_period_end=schedule.voting_period_end,
            results_period_start=schedule.results_period_start,
        )

    def set_voting_config(self, round_id: str, voting_config: VotingConfig) -> None:
        self._update(
            round_id,
            max_votes_per_voter=voting_config.max_votes_per_voter,
            max_votes_per_project_per_voter=voting_config.max_votes_per_project_per_voter,
            min_votes_per_project_per_voter=voting_config.min_votes_per_project_per_voter,
            allowed_voter_count=voting_config.allowed_voter_count,
        )

    def set_published(self, round_id: str, published: bool) -> None:
        self._update(round_id, published=published)

    def set_phase_override(self, round_id: str, phase: Optional[RoundPhase]) -> None:
        self._update(round_id, phase_override=phase.value if phase else None)

    def set_results_state(
        self,
        round_id: str,
        calculated: Optional[bool] = None,
        published: Optional[bool] = None,
        method: Optional[str] = None,
    ) -> None:
        values = {}
        if calculated is not None:
            values["results_calculated"] = calculated
        if published is not None:
            values["results_published"] = published
        if method is not None:
            values["results_method"] = method
        if values:
            self._update(round_id, **values)


# ── Voters ────────────────────────────────────────────────────────────────────

class VoterRepository:
    def __init__(self, session: Session):
        self.session = session

    def list_for_round(self, round_id: str) -> list[RoundVoter]:
        rows = self.session.execute(
            select(UserRecord.id, UserRecord.wallet_address)
            .join(RoundVoterRecord, RoundVoterRecord.user_id == UserRecord.id)
            .where(RoundVoterRecord.round_id == round_id)
            .order_by(UserRecord.wallet_address)
        ).all()
        return [RoundVoter(user_id=r.id, wallet_address=r.wallet_address) for r in rows]

    def user_ids(self, round_id: str) -> set[str]:
        return set(
            self.session.scalars(
                select(RoundVoterRecord.user_id).where(RoundVoterRecord.round_id == round_id)
            )
        )

    def is_voter(self, round_id: str, user_id: str) -> bool:
        return self.session.get(RoundVoterRecord, (round_id, user_id)) is not None

    def count(self, round_id: str) -> int:
        return self.session.scalar(
            select(func.count()).select_from(RoundVoterRecord).where(RoundVoterRecord.round_id == round_id)
        )

    def replace(self, round_id: str, user_ids: Iterable[str]) -> None:
        """Delete the whole roster and insert the new one (same transaction)."""
        self.session.execute(delete(RoundVoterRecord).where(RoundVoterRecord.round_id == round_id))
        rows = [{"round_id": round_id, "user_id": user_id} for user_id in user_ids]
        if rows:
            self.session.execute(insert(RoundVoterRecord), rows)


# ── Applications ──────────────────────────────────────────────────────────────

class ApplicationRepository:
    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _to_application(record: ApplicationRecord) -> Application:
        return Application(
            id=record.id,
            round_id=record.round_id,
            project_name=record.project_name,
            created_at=as_utc(record.created_at),
        )

    def add(self, round_id: str, project_name: str, application_id: Optional[str] = None) -> Application:
        record = ApplicationRecord(
            id=application_id or _new_id(),
            round_id=round_id,
            project_name=project_name,
            created_at=_now(),
        )
        self.session.add(record)
        self.session.flush()
        return self._to_application(record)

    def get(self, application_id: str) -> Optional[Application]:
        record = self.session.get(ApplicationRecord, application_id)
        return self._to_application(record) if record is not None else None

    def list_for_round(self, round_id: str) -> list[Application]:
        records = self.session.scalars(
            select(ApplicationRecord)
            .where(ApplicationRecord.round_id == round_id)
            .order_by(ApplicationRecord.created_at, ApplicationRecord.id)
        )
        return [self._to_application(r) for r in records]

    def ids_for_round(self, round_id: str) -> set[str]:
        return set(
            self.session.scalars(
                select(ApplicationRecord.id).where(ApplicationRecord.round_id == round_id)
            )
        )


# ── Ballots ───────────────────────────────────────────────────────────────────

class BallotRepository:
    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _to_ballot(record: BallotRecord) -> Ballot:
        return Ballot(
            id=record.id,
            round_id=record.round_id,
            voter_user_id=record.voter_user_id,
            votes=dict(record.votes or {}),
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
        )

    def get(self, round_id: str, voter_user_id: str) -> Optional[Ballot]:
        record = self.session.scalar(
            select(BallotRecord)
            .where(BallotRecord.round_id == round_id, BallotRecord.voter_user_id == voter_user_id)
            .execution_options(populate_existing=True)
        )
        return self._to_ballot(record) if record is not None else None

    def list_for_round(self, round_id: str) -> list[Ballot]:
        records = self.session.scalars(
            select(BallotRecord)
            .where(BallotRecord.round_id == round_id)
            .order_by(BallotRecord.created_at, BallotRecord.id)
        )
        return [self._to_ballot(r) for r in records]

    def voters_with_ballots(self, round_id: str, user_ids: Iterable[str]) -> set[str]:
        user_ids = list(user_ids)
        if not user_ids:
            return set()
        return set(
            self.session.scalars(
                select(BallotRecord.voter_user_id).where(
                    BallotRecord.round_id == round_id,
                    BallotRecord.voter_user_id.in_(user_ids),
                )
            )
        )

    def count(self, round_id: str) -> int:
        return self.session.scalar(
            select(func.count()).select_from(BallotRecord).where(BallotRecord.round_id == round_id)
        )

    def upsert(self, round_id: str, voter_user_id: str, votes: dict, now: datetime) -> Ballot:
        """Insert or replace the voter's single ballot for the round."""
        stmt = _dialect_insert(self.session, BallotRecord).values(
            id=_new_id(),
            round_id=round_id,
            voter_user_id=voter_user_id,
            votes=votes,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["round_id", "voter_user_id"],
            set_={"votes": stmt.excluded.votes, "updated_at": stmt.excluded.updated_at},
        )
        self.session.execute(stmt)
        return self.get(round_id, voter_user_id)


# ── Custom datasets ───────────────────────────────────────────────────────────

class DatasetRepository:
    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _to_dataset(record: CustomDatasetRecord) -> CustomDataset:
        return CustomDataset(
            id=record.id,
            round_id=record.round_id,
            name=record.name,
            is_public=bool(record.is_public),
            fields=list(record.fields or []),
            row_count=record.row_count,
            created_at=as_utc(record.created_at),
            updated_at=as_utc(record.updated_at),
        )

    def add(self, round_id: str, name: str) -> CustomDataset:
        now = _now()
        record = CustomDatasetRecord(
            id=_new_id(),
            round_id=round_id,
            name=name,
            is_public=False,
            fields=[],
            row_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(record)
        self.session.flush()
        return self._to_dataset(record)

    def get(self, dataset_id: str, for_update: bool = False) -> Optional[CustomDataset]:
        record = self.session.get(
            CustomDatasetRecord, dataset_id, with_for_update=for_update, populate_existing=True
        )
        return self._to_dataset(record) if record is not None else None

    def count_for_round(self, round_id: str) -> int:
        return self.session.scalar(
            select(func.count())
            .select_from(CustomDatasetRecord)
            .where(CustomDatasetRecord.round_id == round_id)
        )

    def name_exists(self, round_id: str, name: str) -> bool:
        return self.session.scalar(
            select(func.count())
            .select_from(CustomDatasetRecord)
            .where(CustomDatasetRecord.round_id == round_id, CustomDatasetRecord.name == name)
        ) > 0

    def list_for_round(self, round_id: str, public_only: bool = False) -> list[CustomDataset]:
        query = select(CustomDatasetRecord).where(CustomDatasetRecord.round_id == round_id)
        if public_only:
            query = query.where(CustomDatasetRecord.is_public.is_(True))
        query = query.order_by(CustomDatasetRecord.created_at, CustomDatasetRecord.id)
        return [self._to_dataset(r) for r in self.session.scalars(query)]

    def replace_rows(
        self,
        dataset_id: str,
        fields: list[str],
        rows: list[tuple[str, dict[str, str]]],
    ) -> CustomDataset:
        """Delete every prior row, insert the new set, update fields/row_count."""
        self.session.execute(
            delete(CustomDatasetRowRecord).where(CustomDatasetRowRecord.dataset_id == dataset_id)
        )
        if rows:
            self.session.execute(
                insert(CustomDatasetRowRecord),
                [
                    {"dataset_id": dataset_id, "application_id": app_id, "data": values}
                    for app_id, values in rows
                ],
            )
        self.session.execute(
            update(CustomDatasetRecord)
            .where(CustomDatasetRecord.id == dataset_id)
            .values(fields=list(fields), row_count=len(rows), updated_at=_now())
        )
        return self.get(dataset_id)

    def set_visibility(self, dataset_id: str, is_public: bool) -> CustomDataset:
        self.session.execute(
            update(CustomDatasetRecord)
            .where(CustomDatasetRecord.id == dataset_id)
            .values(is_public=is_public, updated_at=_now())
        )
        return self.get(dataset_id)

    def rows(self, dataset_id: str) -> dict[str, dict[str, str]]:
        records = self.session.scalars(
            select(CustomDatasetRowRecord).where(CustomDatasetRowRecord.dataset_id == dataset_id)
        )
        return {r.application_id: dict(r.data or {}) for r in records}

    def rows_for_application(
        self, application_id: str, dataset_ids: Iterable[str]
    ) -> dict[str, dict[str, str]]:
        """Map dataset_id -> values for one application across the given datasets."""
        dataset_ids = list(dataset_ids)
        if not dataset_ids:
            return {}
        records = self.session.scalars(
            select(CustomDatasetRowRecord).where(
                CustomDatasetRowRecord.application_id == application_id,
                CustomDatasetRowRecord.dataset_id.in_(dataset_ids),
            )
        )
        return {r.dataset_id: dict(r.data or {}) for r in records}

    def delete(self, dataset_id: str) -> None:
        self.session.execute(
            delete(CustomDatasetRowRecord).where(CustomDatasetRowRecord.dataset_id == dataset_id)
        )
        self.session.execute(delete(CustomDatasetRecord).where(CustomDatasetRecord.id == dataset_id))


# ── Results ───────────────────────────────────────────────────────────────────

class ResultRepository:
    def __init__(self, session: Session):
        self.session = session

    def replace(self, round_id: str, scores: dict[str, float], method: str) -> None:
        self.session.execute(delete(ResultRecord).where(ResultRecord.round_id == round_id))
        rows = [
            {"round_id": round_id, "application_id": app_id, "method": method, "score": float(score)}
            for app_id, score in scores.items()
        ]
        if rows:
            self.session.execute(insert(ResultRecord), rows)

    def list_for_round(self, round_id: str) -> list[RoundResult]:
        records = self.session.scalars(
            select(ResultRecord)
            .where(ResultRecord.round_id == round_id)
            .order_by(ResultRecord.score.desc(), ResultRecord.application_id)
        )
        return [
            RoundResult(application_id=r.application_id, score=r.score, method=r.method)
            for r in records
        ]


# ── Audit log ─────────────────────────────────────────────────────────────────

class AuditLogRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        round_id: str,
        action: AuditLogAction,
        user_id: Optional[str],
        payload=None,
    ) -> None:
        """Append one entry. user_id=None records a system actor."""
        actor_type = AuditLogActorType.USER if user_id else AuditLogActorType.SYSTEM
        self.session.add(
            AuditLogRecord(
                round_id=round_id,
                action=action.value,
                actor_type=actor_type.value,
                user_id=user_id,
                payload=payload,
                created_at=_now(),
            )
        )
        self.session.flush()

    def list_for_round(
        self, round_id: str, limit: int, before_id: Optional[int] = None
    ) -> list[AuditLog]:
        """Up to `limit` entries, newest first, with ids below before_id when given."""
        query = (
            select(AuditLogRecord, UserRecord.wallet_address)
            .outerjoin(UserRecord, UserRecord.id == AuditLogRecord.user_id)
            .where(AuditLogRecord.round_id == round_id)
        )
        if before_id is not None:
            query = query.where(AuditLogRecord.id < before_id)
        query = query.order_by(AuditLogRecord.id.desc()).limit(limit)

        return [
            AuditLog(
                id=record.id,
                round_id=record.round_id,
                action=AuditLogAction(record.action),
                actor_type=AuditLogActorType(record.actor_type),
                user_id=record.user_id,
                wallet_address=wallet_address,
                payload=record.payload,
                created_at=as_utc(record.created_at),
            )
            for record, wallet_address in self.session.execute(query).all()
        ]
