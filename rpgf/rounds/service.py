"""
rpgf/rounds/service.py: Round creation, publishing, and the admin capability check.

The admin check is always evaluated with the session of the transaction that
performs the gated mutation (require_round_admin), so a concurrent change to
the admin set cannot slip between check and write.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from rpgf.config import DEFAULT_CONFIG, RPGFConfig
from rpgf.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from rpgf.models import AuditLogAction, Identity, Round, RoundPhase, RoundSchedule, VotingConfig
from rpgf.rounds.clock import Clock, derive_phase, ensure_valid_schedule, utc_now
from rpgf.storage.repositories import AuditLogRepository, RoundRepository, UserRepository
from rpgf.storage.session import Database

logger = logging.getLogger(__name__)


def load_round(session: Session, round_id: str, for_update: bool = False) -> Round:
    round_ = RoundRepository(session).get(round_id, for_update=for_update)
    if round_ is None:
        logger.error("Round not found: %s", round_id)
        raise NotFoundError("Round not found.")
    return round_


def is_round_admin(session: Session, round_id: str, user_id: Optional[str]) -> bool:
    """The isRoundAdmin(userId, roundId) capability, read inside `session`."""
    return RoundRepository(session).is_admin(round_id, user_id)


def require_round_admin(
    session: Session,
    round_id: str,
    user_id: Optional[str],
    action: str = "modify this round",
    for_update: bool = False,
) -> Round:
    """
    Load a round and assert the requester administers it.

    Raises:
        NotFoundError:      Round does not exist.
        AuthorizationError: user_id is not one of the round's admins.
    """
    round_ = load_round(session, round_id, for_update=for_update)
    if not is_round_admin(session, round_id, user_id):
        logger.error("User %s is not authorized to %s (round %s)", user_id, action, round_id)
        raise AuthorizationError(f"You are not authorized to {action}.")
    return round_


def _validate_voting_config(config: VotingConfig) -> None:
    errors = []
    if config.max_votes_per_voter < 1:
        errors.append("maxVotesPerVoter must be at least 1.")
    if config.max_votes_per_project_per_voter <= 0:
        errors.append("maxVotesPerProjectPerVoter must be positive.")
    if config.allowed_voter_count is not None and config.allowed_voter_count < 1:
        errors.append("allowedVoterCount must be at least 1 when set.")
    if (
        config.min_votes_per_project_per_voter is not None
        and config.min_votes_per_project_per_voter > config.max_votes_per_project_per_voter
    ):
        errors.append("minVotesPerProjectPerVoter cannot exceed maxVotesPerProjectPerVoter.")
    if errors:
        raise ValidationError(errors)


def _schedule_payload(schedule: Optional[RoundSchedule]) -> Optional[dict]:
    if schedule is None:
        return None
    return {
        "applicationPeriodStart": schedule.application_period_start.isoformat(),
        "applicationPeriodEnd": schedule.application_period_end.isoformat(),
        "votingPeriodStart": schedule.voting_period_start.isoformat(),
        "votingPeriodEnd": schedule.voting_period_end.isoformat(),
        "resultsPeriodStart": schedule.results_period_start.isoformat(),
    }


def _voting_config_payload(config: Optional[VotingConfig]) -> Optional[dict]:
    if config is None:
        return None
    return {
        "maxVotesPerVoter": config.max_votes_per_voter,
        "maxVotesPerProjectPerVoter": config.max_votes_per_project_per_voter,
        "allowedVoterCount": config.allowed_voter_count,
        "minVotesPerProjectPerVoter": config.min_votes_per_project_per_voter,
    }


class RoundService:
    """
    Round lifecycle operations that sit around the voting core.

    Args:
        database: Database providing the transactional boundary.
        clock:    Injectable source of "now" for phase derivation.
        config:   RPGFConfig; enable_dangerous_test_routes gates the override.
    """

    def __init__(self, database: Database, clock: Clock = utc_now, config: RPGFConfig = DEFAULT_CONFIG):
        self.database = database
        self.clock = clock
        self.config = config

    def create_round(
        self,
        slug: str,
        creator: Identity,
        schedule: Optional[RoundSchedule] = None,
        voting_config: Optional[VotingConfig] = None,
        admin_wallet_addresses: Iterable[str] = (),
        name: Optional[str] = None,
    ) -> Round:
        """Create a draft round. The creator is always one of its admins."""
        slug = slug.strip()
        if not slug:
            raise ValidationError("Round slug must not be empty.")
        if schedule is not None:
            ensure_valid_schedule(schedule)
        if voting_config is not None:
            _validate_voting_config(voting_config)

        admin_wallets = {creator.wallet_address.strip().lower()}
        admin_wallets.update(a.strip().lower() for a in admin_wallet_addresses if a.strip())

        logger.info("Creating round '%s' with %d admin(s)", slug, len(admin_wallets))
        with self.database.transaction() as session:
            rounds = RoundRepository(session)
            if rounds.slug_exists(slug):
                raise ConflictError(f"Round slug '{slug}' is already taken.")

            users = UserRepository(session)
            creator_identity = users.get_or_create_by_wallet(creator.wallet_address, creator.user_id)
            admin_ids = [users.get_or_create_by_wallet(w).user_id for w in sorted(admin_wallets)]

            round_ = rounds.add(
                slug=slug,
                name=name,
                created_by_user_id=creator_identity.user_id,
                admin_user_ids=admin_ids,
                schedule=schedule,
                voting_config=voting_config,
            )
            AuditLogRepository(session).add(
                round_.id,
                AuditLogAction.ROUND_CREATED,
                creator_identity.user_id,
                {
                    "slug": slug,
                    "name": name,
                    "adminWalletAddresses": sorted(admin_wallets),
                    "schedule": _schedule_payload(schedule),
                    "votingConfig": _voting_config_payload(voting_config),
                },
            )
            return round_

    def update_schedule(self, round_id: str, schedule: RoundSchedule, requesting_user_id: str) -> Round:
        ensure_valid_schedule(schedule)
        with self.database.transaction() as session:
            round_ = require_round_admin(session, round_id, requesting_user_id, for_update=True)
            if round_.published:
                raise ConflictError("The schedule of a published round cannot be changed.")
            RoundRepository(session).set_schedule(round_id, schedule)
            AuditLogRepository(session).add(
                round_id, AuditLogAction.ROUND_SETTINGS_CHANGED, requesting_user_id,
                {"schedule": _schedule_payload(schedule)},
            )
            return load_round(session, round_id)

    def update_voting_config(
        self, round_id: str, voting_config: VotingConfig, requesting_user_id: str
    ) -> Round:
        _validate_voting_config(voting_config)
        with self.database.transaction() as session:
            round_ = require_round_admin(session, round_id, requesting_user_id, for_update=True)
            if round_.published:
                raise ConflictError("The voting configuration of a published round cannot be changed.")
            RoundRepository(session).set_voting_config(round_id, voting_config)
            AuditLogRepository(session).add(
                round_id, AuditLogAction.ROUND_SETTINGS_CHANGED, requesting_user_id,
                {"votingConfig": _voting_config_payload(voting_config)},
            )
            return load_round(session, round_id)

    def publish_round(self, round_id: str, requesting_user_id: str) -> Round:
        """Flip published to true, exactly once."""
        logger.info("Publishing round %s (requested by %s)", round_id, requesting_user_id)
        with self.database.transaction() as session:
            round_ = require_round_admin(
                session, round_id, requesting_user_id, action="publish this round", for_update=True
            )
            if round_.published:
                raise ConflictError("Round is already published.")

            problems = []
            if round_.schedule is None:
                problems.append("Round schedule is incomplete.")
            if round_.voting_config is None:
                problems.append("Round voting configuration is missing.")
            if problems:
                raise ValidationError(problems)
            ensure_valid_schedule(round_.schedule)

            RoundRepository(session).set_published(round_id, True)
            AuditLogRepository(session).add(round_id, AuditLogAction.ROUND_PUBLISHED, requesting_user_id)
            return load_round(session, round_id)

    def get_round(self, round_id: str) -> Round:
        with self.database.transaction() as session:
            return load_round(session, round_id)

    def get_round_by_slug(self, slug: str) -> Round:
        with self.database.transaction() as session:
            round_ = RoundRepository(session).get_by_slug(slug)
            if round_ is None:
                raise NotFoundError(f"Round '{slug}' not found.")
            return round_

    def current_phase(self, round_id: str) -> RoundPhase:
        return derive_phase(self.get_round(round_id), self.clock())

    def force_round_phase(self, round_slug: str, desired_phase: Optional[RoundPhase]) -> Round:
        """
        Testing-only: pin a round's phase regardless of the clock.

        Forcing DRAFT un-publishes the round; forcing any other phase marks it
        published. desired_phase=None removes the override.

        Raises:
            AuthorizationError: enable_dangerous_test_routes is off.
            NotFoundError:      No round with this slug.
        """
        if not self.config.enable_dangerous_test_routes:
            logger.warning("Rejected phase override for '%s': test routes disabled.", round_slug)
            raise AuthorizationError(
                "Dangerous test routes are not enabled. Set ENABLE_DANGEROUS_TEST_ROUTES to true."
            )

        with self.database.transaction() as session:
            rounds = RoundRepository(session)
            round_ = rounds.get_by_slug(round_slug)
            if round_ is None:
                raise NotFoundError(f"Round '{round_slug}' not found.")

            rounds.set_phase_override(round_.id, desired_phase)
            if desired_phase is not None:
                rounds.set_published(round_.id, desired_phase != RoundPhase.DRAFT)
            AuditLogRepository(session).add(
                round_.id, AuditLogAction.ROUND_PHASE_FORCED, None,
                {"desiredState": desired_phase.value if desired_phase else None},
            )

            logger.warning(
                "Round '%s' phase override set to %s.",
                round_slug,
                desired_phase.value if desired_phase else "none (cleared)",
            )
            return load_round(session, round_.id)
