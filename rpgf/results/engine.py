"""
rpgf/results/engine.py: Turn ballots into one score per application.

Aggregation rule:
    For each application, only ballots that contain an explicit entry for it
    contribute. An application no ballot mentions scores 0 under every method.

    sum    = total of the contributing votes
    avg    = arithmetic mean of the contributing votes
    median = middle contributing vote; mean of the two middle ones for an even count

Scores are floats; no rounding is applied.

Pure functions only: no I/O, no clock, no database.
"""

import logging
from typing import Iterable, Mapping

import numpy as np

from rpgf.errors import ValidationError
from rpgf.models import Ballot, ResultCalculationMethod

logger = logging.getLogger(__name__)

IMPORT_METHOD = "import"


def parse_results_method(value) -> ResultCalculationMethod:
    """
    Accept a ResultCalculationMethod or its string value (case-insensitive).

    Raises:
        ValidationError: Unknown method name.
    """
    if isinstance(value, ResultCalculationMethod):
        return value
    try:
        return ResultCalculationMethod(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in ResultCalculationMethod)
        raise ValidationError(f"Unknown results method '{value}'. Expected one of: {allowed}.")


def _aggregate(votes: list[float], method: ResultCalculationMethod) -> float:
    if not votes:
        return 0.0
    arr = np.asarray(votes, dtype=float)
    if method == ResultCalculationMethod.SUM:
        return float(arr.sum())
    if method == ResultCalculationMethod.AVG:
        return float(arr.mean())
    return float(np.median(arr))


def calculate_results_for_applications(
    application_ids: Iterable[str],
    ballots: Iterable[Ballot],
    method,
) -> dict[str, float]:
    """
    Score every application of a round from its ballots.

    Args:
        application_ids: All applications of the round; each gets a score.
        ballots:         Ballots of the round (BallotStore.list_ballots), or plain
                         application_id -> vote mappings.
        method:          ResultCalculationMethod or its string value.

    Returns:
        Dict application_id -> score, one key per input application.
    """
    method = parse_results_method(method)
    application_ids = list(application_ids)
    votes_by_app: dict[str, list[float]] = {app_id: [] for app_id in application_ids}

    n_ballots = 0
    for ballot in ballots:
        n_ballots += 1
        votes = ballot if isinstance(ballot, Mapping) else ballot.votes
        for app_id, vote in votes.items():
            if app_id in votes_by_app:
                votes_by_app[app_id].append(float(vote))

    scores = {app_id: _aggregate(votes, method) for app_id, votes in votes_by_app.items()}
    logger.info(
        "Calculated %s results for %d application(s) from %d ballot(s)",
        method.value, len(scores), n_ballots,
    )
    return scores


def normalize_imported_results(
    application_ids: Iterable[str],
    imported_scores: Mapping[str, float],
) -> dict[str, float]:
    """
    Fit externally computed scores to the round's applications.

    Every application gets a score (0 when absent from the import); scores for
    IDs outside the round are dropped.
    """
    application_ids = list(application_ids)
    known = set(application_ids)
    dropped = [app_id for app_id in imported_scores if app_id not in known]
    if dropped:
        logger.warning("Dropping %d imported score(s) for unknown applications", len(dropped))
    return {app_id: float(imported_scores.get(app_id, 0.0)) for app_id in application_ids}
