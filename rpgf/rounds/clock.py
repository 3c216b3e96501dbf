"""
rpgf/rounds/clock.py: Round phase derivation.

The phase of a round is never stored. It is recomputed on every access from
the published flag, the five period boundaries, and the current time:

    not published                                   → DRAFT
    now <  application_period_start                 → UPCOMING
    application_period_start <= now < ..._end       → INTAKE
    voting_period_start <= now < voting_period_end  → VOTING
    now >= results_period_start                     → RESULTS
    otherwise (the gaps between periods)            → CLOSED

A persisted phase_override replaces the computed phase unconditionally. It
exists for test fixtures only (see RoundService.force_round_phase) and every
use of it is logged.

The clock is any zero-argument callable returning an aware datetime, so tests
can pin "now" to any instant.
"""

import logging
from datetime import datetime, timezone
from typing import Callable

from rpgf.errors import ValidationError
from rpgf.models import Round, RoundPhase, RoundSchedule

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as SQLite returns them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_schedule(schedule: RoundSchedule) -> list[str]:
    """
    Check the period ordering invariant.

    Returns:
        List of human-readable problems; empty if the schedule is valid.
    """
    a_start = as_utc(schedule.application_period_start)
    a_end = as_utc(schedule.application_period_end)
    v_start = as_utc(schedule.voting_period_start)
    v_end = as_utc(schedule.voting_period_end)
    r_start = as_utc(schedule.results_period_start)

    errors = []
    if not a_start < a_end:
        errors.append("Application period must start before it ends.")
    if not a_end <= v_start:
        errors.append("Voting period cannot start before the application period ends.")
    if not v_start < v_end:
        errors.append("Voting period must start before it ends.")
    if not v_end <= r_start:
        errors.append("Results period cannot start before the voting period ends.")
    return errors


def ensure_valid_schedule(schedule: RoundSchedule) -> None:
    errors = validate_schedule(schedule)
    if errors:
        raise ValidationError(errors)


def phase_from_schedule(published: bool, schedule: RoundSchedule | None, now: datetime) -> RoundPhase:
    """Pure mapping of (published, boundaries, now) to a phase, ignoring overrides."""
    if not published:
        return RoundPhase.DRAFT
    if schedule is None:
        raise ValueError("A published round must have a complete schedule.")

    now = as_utc(now)
    if now < as_utc(schedule.application_period_start):
        return RoundPhase.UPCOMING
    if now < as_utc(schedule.application_period_end):
        return RoundPhase.INTAKE
    if as_utc(schedule.voting_period_start) <= now < as_utc(schedule.voting_period_end):
        return RoundPhase.VOTING
    if now >= as_utc(schedule.results_period_start):
        return RoundPhase.RESULTS
    return RoundPhase.CLOSED


def derive_phase(round_: Round, now: datetime) -> RoundPhase:
    """
    Derive the current lifecycle phase of a round.

    Args:
        round_: Round aggregate (published flag, schedule, optional override).
        now:    Current instant, normally clock() from an injected Clock.

    Returns:
        RoundPhase for this instant.
    """
    if round_.phase_override is not None:
        logger.info(
            "Round %s phase overridden to '%s' (derived phase bypassed).",
            round_.slug,
            round_.phase_override.value,
        )
        return round_.phase_override
    return phase_from_schedule(round_.published, round_.schedule, now)
