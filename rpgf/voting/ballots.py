"""
rpgf/voting/ballots.py: One ballot per (round, voter), cast during VOTING.

A ballot maps application IDs to a numeric vote. Casting again replaces the
previous ballot. The upsert relies on the (round_id, voter_user_id) unique
constraint, so concurrent submissions need no application-level lock.

This module is the only read path for ballots used by results aggregation.
"""

import logging
import math
from typing import Optional

import pandas as pd
from sqlalchemy.orm import Session

from rpgf.errors import AuthorizationError, ConflictError, ValidationError
from rpgf.models import AuditLogAction, Ballot, BallotStats, RoundPhase, VotingConfig
from rpgf.rounds.clock import Clock, derive_phase, utc_now
from rpgf.rounds.service import load_round, require_round_admin
from rpgf.storage.repositories import (
    ApplicationRepository,
    AuditLogRepository,
    BallotRepository,
    VoterRepository,
)
from rpgf.storage.session import Database

logger = logging.getLogger(__name__)

BALLOT_CSV_COLUMNS = [
    "Voter Wallet Address",
    "Application ID",
    "Project Name",
    "Assigned votes",
    "Submitted at",
    "Updated at",
]


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_ballot(votes: dict, voting_config: VotingConfig) -> list[str]:
    """
    Check a ballot against the round's voting configuration.

    Rules:
        - at least one entry
        - at most voting_config.max_votes_per_voter entries
        - every vote a finite, non-negative number
        - no vote above max_votes_per_project_per_voter
        - positive votes not below min_votes_per_project_per_voter (when set)

    Returns:
        List of problems; empty if the ballot is acceptable.
    """
    if not isinstance(votes, dict) or not votes:
        return ["Ballot must include at least one application with an allocation."]

    errors = []
    if len(votes) > voting_config.max_votes_per_voter:
        errors.append(
            f"Ballot has {len(votes)} entries; at most {voting_config.max_votes_per_voter} are allowed."
        )

    minimum = voting_config.min_votes_per_project_per_voter
    for application_id, vote in votes.items():
        if not is_number(vote) or vote < 0:
            errors.append(f"Votes for application {application_id} must be a non-negative number.")
            continue
        if vote > voting_config.max_votes_per_project_per_voter:
            errors.append(
                f"Votes for application {application_id} exceed the maximum allowed "
                f"({voting_config.max_votes_per_project_per_voter})."
            )
        if minimum is not None and 0 < vote < minimum:
            errors.append(
                f"Votes for application {application_id} are below the minimum required ({minimum})."
            )
    return errors


class BallotStore:
    """
    Args:
        database: Database providing the transactional boundary.
        clock:    Injectable source of "now"; decides whether voting is open.
    """

    def __init__(self, database: Database, clock: Clock = utc_now):
        self.database = database
        self.clock = clock

    def cast_ballot(self, round_id: str, voter_user_id: str, votes: dict) -> Ballot:
        """
        Record (or replace) the caller's ballot for the round.

        Raises:
            NotFoundError:      Round does not exist.
            AuthorizationError: Caller is not on the round's roster.
            ConflictError:      The round is not in its VOTING phase.
            ValidationError:    Ballot breaks the voting configuration or names
                                an application outside the round.
        """
        logger.info("Submitting ballot for round %s (voter %s)", round_id, voter_user_id)
        with self.database.transaction() as session:
            round_ = load_round(session, round_id)

            if not VoterRepository(session).is_voter(round_id, voter_user_id):
                logger.error("User %s is not a voter for round %s", voter_user_id, round_id)
                raise AuthorizationError("You are not authorized to submit a ballot for this round.")

            now = self.clock()
            phase = derive_phase(round_, now)
            if phase != RoundPhase.VOTING:
                logger.error("Round %s is not in voting phase (phase=%s)", round_id, phase.value)
                raise ConflictError("Round is not in voting state.")

            if round_.voting_config is None:
                raise ConflictError("Round is not properly configured for voting.")

            errors = validate_ballot(votes, round_.voting_config)
            if not errors:
                known = ApplicationRepository(session).ids_for_round(round_id)
                unknown = sorted(a for a in votes if a not in known)
                if unknown:
                    errors.append(
                        "The following application IDs are not part of this round: "
                        + ", ".join(unknown)
                    )
            if errors:
                raise ValidationError(errors)

            ballots = BallotRepository(session)
            previous = ballots.get(round_id, voter_user_id)
            ballot = ballots.upsert(round_id, voter_user_id, dict(votes), now)
            action = AuditLogAction.BALLOT_UPDATED if previous else AuditLogAction.BALLOT_SUBMITTED
            AuditLogRepository(session).add(
                round_id, action, voter_user_id, {"id": ballot.id, "ballot": dict(votes)}
            )
            return ballot

    def get_ballot(self, round_id: str, voter_user_id: str) -> Optional[Ballot]:
        with self.database.transaction() as session:
            load_round(session, round_id)
            return BallotRepository(session).get(round_id, voter_user_id)

    def list_ballots(self, round_id: str, session: Optional[Session] = None) -> list[Ballot]:
        """All ballots of a round. Pass `session` to read inside a caller's transaction."""
        if session is not None:
            return BallotRepository(session).list_for_round(round_id)
        with self.database.transaction() as own_session:
            load_round(own_session, round_id)
            return BallotRepository(own_session).list_for_round(round_id)

    def ballot_stats(self, round_id: str, requesting_user_id: str) -> BallotStats:
        with self.database.transaction() as session:
            require_round_admin(session, round_id, requesting_user_id, action="view the ballots for this round")
            return BallotStats(
                number_of_voters=VoterRepository(session).count(round_id),
                number_of_ballots=BallotRepository(session).count(round_id),
            )

    def export_ballots_csv(self, round_id: str, requesting_user_id: str) -> str:
        """One CSV row per (voter, application) allocation, roster order."""
        with self.database.transaction() as session:
            require_round_admin(session, round_id, requesting_user_id, action="view the ballots for this round")
            voters = VoterRepository(session).list_for_round(round_id)
            applications = {a.id: a for a in ApplicationRepository(session).list_for_round(round_id)}
            ballots = {b.voter_user_id: b for b in BallotRepository(session).list_for_round(round_id)}

        rows = []
        for voter in voters:
            ballot = ballots.get(voter.user_id)
            if ballot is None:
                continue
            for application_id, vote in ballot.votes.items():
                application = applications.get(application_id)
                rows.append({
                    "Voter Wallet Address": voter.wallet_address,
                    "Application ID": application_id,
                    "Project Name": application.project_name if application else "",
                    "Assigned votes": vote,
                    "Submitted at": ballot.created_at.isoformat(),
                    "Updated at": ballot.updated_at.isoformat(),
                })

        return pd.DataFrame(rows, columns=BALLOT_CSV_COLUMNS).to_csv(index=False)
