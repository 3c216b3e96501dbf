"""
rpgf/storage/schema.py: Relational layout of the round core.

One table per relation, with the uniqueness constraints the services rely on:
    round_voters         (round_id, user_id)
    ballots              (round_id, voter_user_id)  (ballot upsert target)
    custom_dataset_rows  (dataset_id, application_id)

audit_logs is append-only and written in the same transaction as the change
it records.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    pass


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    wallet_address: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class RoundRecord(Base):
    __tablename__ = "rounds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    published: Mapped[bool] = mapped_column(Boolean, default=False)

    application_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    application_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    voting_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    voting_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    results_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    max_votes_per_voter: Mapped[Optional[int]] = mapped_column(Integer)
    max_votes_per_project_per_voter: Mapped[Optional[float]] = mapped_column(Float)
    min_votes_per_project_per_voter: Mapped[Optional[float]] = mapped_column(Float)
    allowed_voter_count: Mapped[Optional[int]] = mapped_column(Integer)

    # Testing-only bypass of the derived phase. NULL in normal operation.
    phase_override: Mapped[Optional[str]] = mapped_column(String(32))

    results_calculated: Mapped[bool] = mapped_column(Boolean, default=False)
    results_published: Mapped[bool] = mapped_column(Boolean, default=False)
    results_method: Mapped[Optional[str]] = mapped_column(String(16))

    created_by_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class RoundAdminRecord(Base):
    __tablename__ = "round_admins"

    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id"), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), primary_key=True)


class RoundVoterRecord(Base):
    __tablename__ = "round_voters"

    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id"), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), primary_key=True)


class ApplicationRecord(Base):
    __tablename__ = "applications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id"), index=True)
    project_name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class BallotRecord(Base):
    __tablename__ = "ballots"
    __table_args__ = (UniqueConstraint("round_id", "voter_user_id", name="uq_ballot_round_voter"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id"), index=True)
    voter_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    votes: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class CustomDatasetRecord(Base):
    __tablename__ = "custom_datasets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    # Ordered field names of the last successful upload.
    fields: Mapped[list] = mapped_column(JSON, default=list)
    row_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class CustomDatasetRowRecord(Base):
    __tablename__ = "custom_dataset_rows"

    dataset_id: Mapped[str] = mapped_column(ForeignKey("custom_datasets.id"), primary_key=True)
    application_id: Mapped[str] = mapped_column(ForeignKey("applications.id"), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON)


class ResultRecord(Base):
    __tablename__ = "results"

    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id"), primary_key=True)
    application_id: Mapped[str] = mapped_column(ForeignKey("applications.id"), primary_key=True)
    method: Mapped[str] = mapped_column(String(16))
    score: Mapped[float] = mapped_column(Float)


class AuditLogRecord(Base):
    __tablename__ = "audit_logs"
    # Ids only ever grow; they double as the pagination cursor.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id"), index=True)
    action: Mapped[str] = mapped_column(String(64))
    actor_type: Mapped[str] = mapped_column(String(16))
    user_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
