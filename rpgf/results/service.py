"""
rpgf/results/service.py: Calculate, import, publish and read a round's results.

Workflow:
    1. recalculate_results (or import_results) once the round reaches RESULTS.
    2. publish_results makes them visible to everyone.
    3. get_results: admins can read at any time, everyone else once published.

Recalculation is explicit; nothing recomputes results in the background.
"""

import logging
from typing import Mapping, Optional

from rpgf.config import DEFAULT_CONFIG, RPGFConfig
from rpgf.errors import AuthorizationError, ConflictError, ValidationError
from rpgf.models import AuditLogAction, RoundPhase, RoundResult
from rpgf.results.engine import (
    IMPORT_METHOD,
    calculate_results_for_applications,
    normalize_imported_results,
    parse_results_method,
)
from rpgf.rounds.clock import Clock, derive_phase, utc_now
from rpgf.rounds.service import is_round_admin, load_round, require_round_admin
from rpgf.storage.repositories import (
    ApplicationRepository,
    AuditLogRepository,
    ResultRepository,
    RoundRepository,
)
from rpgf.storage.session import Database
from rpgf.voting.ballots import BallotStore, is_number

logger = logging.getLogger(__name__)


class ResultsService:
    """
    Args:
        database: Database providing the transactional boundary.
        ballots:  BallotStore; the only source of ballots for aggregation.
        clock:    Injectable source of "now" for the RESULTS phase check.
        config:   RPGFConfig; default_results_method applies when none is given.
    """

    def __init__(
        self,
        database: Database,
        ballots: BallotStore,
        clock: Clock = utc_now,
        config: RPGFConfig = DEFAULT_CONFIG,
    ):
        self.database = database
        self.ballots = ballots
        self.clock = clock
        self.config = config

    def _require_results_phase(self, round_) -> None:
        phase = derive_phase(round_, self.clock())
        if phase != RoundPhase.RESULTS:
            logger.error("Round %s is not in results phase (phase=%s)", round_.id, phase.value)
            raise ConflictError("Results can only be calculated once the round is in its results phase.")

    def recalculate_results(
        self, round_id: str, method=None, requesting_user_id: Optional[str] = None
    ) -> list[RoundResult]:
        """
        Tally every ballot of the round and replace the stored results.

        Raises:
            NotFoundError:      Round does not exist.
            AuthorizationError: Requester is not a round admin.
            ConflictError:      Round is not in its RESULTS phase.
            ValidationError:    Unknown method name.
        """
        method = parse_results_method(method or self.config.default_results_method)
        logger.info("Recalculating results for round %s using %s", round_id, method.value)

        with self.database.transaction() as session:
            round_ = require_round_admin(
                session, round_id, requesting_user_id,
                action="calculate results for this round", for_update=True,
            )
            self._require_results_phase(round_)

            application_ids = [a.id for a in ApplicationRepository(session).list_for_round(round_id)]
            ballots = self.ballots.list_ballots(round_id, session=session)
            scores = calculate_results_for_applications(application_ids, ballots, method)

            results = ResultRepository(session)
            results.replace(round_id, scores, method.value)
            RoundRepository(session).set_results_state(round_id, calculated=True, method=method.value)
            AuditLogRepository(session).add(
                round_id, AuditLogAction.RESULTS_CALCULATED, requesting_user_id, {"method": method.value}
            )
            return results.list_for_round(round_id)

    def import_results(
        self, round_id: str, scores: Mapping[str, float], requesting_user_id: str
    ) -> list[RoundResult]:
        """Store externally computed scores as the round's results (method 'import')."""
        bad = [app_id for app_id, score in scores.items() if not is_number(score)]
        if bad:
            raise ValidationError([f"Score for application {app_id} must be a number." for app_id in bad])

        logger.info("Importing %d result(s) for round %s", len(scores), round_id)
        with self.database.transaction() as session:
            round_ = require_round_admin(
                session, round_id, requesting_user_id,
                action="import results for this round", for_update=True,
            )
            self._require_results_phase(round_)

            application_ids = [a.id for a in ApplicationRepository(session).list_for_round(round_id)]
            normalized = normalize_imported_results(application_ids, scores)

            results = ResultRepository(session)
            results.replace(round_id, normalized, IMPORT_METHOD)
            RoundRepository(session).set_results_state(round_id, calculated=True, method=IMPORT_METHOD)
            AuditLogRepository(session).add(
                round_id, AuditLogAction.RESULTS_CALCULATED, requesting_user_id, {"method": IMPORT_METHOD}
            )
            return results.list_for_round(round_id)

    def publish_results(self, round_id: str, requesting_user_id: str) -> list[RoundResult]:
        logger.info("Publishing results for round %s (requested by %s)", round_id, requesting_user_id)
        with self.database.transaction() as session:
            round_ = require_round_admin(
                session, round_id, requesting_user_id,
                action="publish results for this round", for_update=True,
            )
            if not round_.results_calculated:
                raise ConflictError("Results must be calculated before they can be published.")
            RoundRepository(session).set_results_state(round_id, published=True)
            AuditLogRepository(session).add(round_id, AuditLogAction.RESULTS_PUBLISHED, requesting_user_id)
            return ResultRepository(session).list_for_round(round_id)

    def get_results(self, round_id: str, requesting_user_id: Optional[str] = None) -> list[RoundResult]:
        """Results ordered by score, highest first."""
        with self.database.transaction() as session:
            round_ = load_round(session, round_id)
            if not round_.results_published and not is_round_admin(session, round_id, requesting_user_id):
                raise AuthorizationError("Results for this round have not been published yet.")
            return ResultRepository(session).list_for_round(round_id)
