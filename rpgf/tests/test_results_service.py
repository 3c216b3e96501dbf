"""
Tests for ResultsService: phase gate, persistence, publish and visibility.
"""

import pytest

from rpgf.errors import AuthorizationError, ConflictError, ValidationError
from rpgf.tests.conftest import DURING_RESULTS


@pytest.fixture
def tallied_round(services, voting_round, applications, voters, clock):
    a, b, c = applications
    services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {a.id: 1, b.id: 4})
    services.ballots.cast_ballot(voting_round.id, voters[1].user_id, {a.id: 3})
    services.ballots.cast_ballot(voting_round.id, voters[2].user_id, {a.id: 8, c.id: 0})
    clock.set(DURING_RESULTS)
    return voting_round


def test_recalculate_during_voting_conflicts(services, voting_round, admin):
    with pytest.raises(ConflictError):
        services.results.recalculate_results(voting_round.id, "sum", admin.user_id)


def test_recalculate_persists_sorted_scores(services, tallied_round, applications, admin):
    a, b, c = applications
    results = services.results.recalculate_results(tallied_round.id, "sum", admin.user_id)

    assert [(r.application_id, r.score) for r in results] == [(a.id, 12.0), (b.id, 4.0), (c.id, 0.0)]
    assert all(r.method == "sum" for r in results)
    assert services.rounds.get_round(tallied_round.id).results_calculated is True


def test_default_method_is_median(services, tallied_round, applications, admin):
    a = applications[0]
    results = services.results.recalculate_results(tallied_round.id, None, admin.user_id)
    scores = {r.application_id: r.score for r in results}
    assert scores[a.id] == 3.0
    assert results[0].method == "median"


def test_recalculate_requires_admin(services, tallied_round, voters):
    with pytest.raises(AuthorizationError):
        services.results.recalculate_results(tallied_round.id, "sum", voters[0].user_id)


def test_results_hidden_until_published(services, tallied_round, admin, voters):
    with pytest.raises(ConflictError):
        services.results.publish_results(tallied_round.id, admin.user_id)

    services.results.recalculate_results(tallied_round.id, "avg", admin.user_id)
    with pytest.raises(AuthorizationError):
        services.results.get_results(tallied_round.id, voters[0].user_id)
    assert services.results.get_results(tallied_round.id, admin.user_id)

    services.results.publish_results(tallied_round.id, admin.user_id)
    public = services.results.get_results(tallied_round.id, None)
    assert len(public) == 3


def test_import_results(services, tallied_round, applications, admin):
    a, b, c = applications
    results = services.results.import_results(tallied_round.id, {b.id: 42, "ghost": 1}, admin.user_id)
    assert [(r.application_id, r.score) for r in results][0] == (b.id, 42.0)
    assert {r.application_id for r in results} == {a.id, b.id, c.id}
    assert all(r.method == "import" for r in results)


def test_import_rejects_non_numeric_scores(services, tallied_round, applications, admin):
    with pytest.raises(ValidationError):
        services.results.import_results(tallied_round.id, {applications[0].id: "high"}, admin.user_id)
