"""
rpgf/core.py: Wire every service onto one Database and one clock.

Usage:
    from rpgf.core import build_services
    services = build_services()
    services.database.create_all()
    services.ballots.cast_ballot(round_id, user_id, {app_id: 3})
"""

import logging
from dataclasses import dataclass
from typing import Optional

from rpgf.applications.service import ApplicationService
from rpgf.audit.service import AuditLogService
from rpgf.config import DEFAULT_CONFIG, RPGFConfig
from rpgf.datasets.service import CustomDatasetService
from rpgf.results.service import ResultsService
from rpgf.rounds.clock import Clock, utc_now
from rpgf.rounds.service import RoundService
from rpgf.storage.session import Database
from rpgf.voting.ballots import BallotStore
from rpgf.voting.roster import VoterRoster

logger = logging.getLogger(__name__)


@dataclass
class RPGFServices:
    """All round services sharing a single Database, clock and configuration."""

    config: RPGFConfig
    database: Database
    rounds: RoundService
    roster: VoterRoster
    ballots: BallotStore
    datasets: CustomDatasetService
    applications: ApplicationService
    results: ResultsService
    audit: AuditLogService


def build_services(
    config: RPGFConfig = DEFAULT_CONFIG,
    database: Optional[Database] = None,
    clock: Clock = utc_now,
) -> RPGFServices:
    """
    Args:
        config:   RPGFConfig; read for the database URL, caps and test-route flag.
        database: Pre-built Database (tests share one); built from config if None.
        clock:    Source of "now" used for every phase decision.
    """
    database = database or Database(config)
    ballots = BallotStore(database, clock)
    services = RPGFServices(
        config=config,
        database=database,
        rounds=RoundService(database, clock, config),
        roster=VoterRoster(database),
        ballots=ballots,
        datasets=CustomDatasetService(database, config),
        applications=ApplicationService(database),
        results=ResultsService(database, ballots, clock, config),
        audit=AuditLogService(database, config),
    )
    logger.debug("Services wired on %s", database.engine.url.render_as_string(hide_password=True))
    return services
