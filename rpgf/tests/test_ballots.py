"""
Tests for ballot casting: roster gate, VOTING gate, limits, single-ballot upsert.
"""

import io
import uuid

import pandas as pd
import pytest

from rpgf.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from rpgf.models import VotingConfig
from rpgf.tests.conftest import DURING_RESULTS
from rpgf.voting.ballots import BALLOT_CSV_COLUMNS, validate_ballot


def test_voter_casts_ballot(services, voting_round, applications, voters):
    a, b, _ = applications
    ballot = services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {a.id: 5, b.id: 3})
    assert ballot.votes == {a.id: 5, b.id: 3}
    assert ballot.voter_user_id == voters[0].user_id


def test_recast_replaces_single_ballot(services, voting_round, applications, voters, clock):
    a, b, _ = applications
    first = services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {a.id: 5})
    clock.advance(minutes=5)
    second = services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {b.id: 7})

    assert second.id == first.id
    assert second.votes == {b.id: 7}
    assert second.updated_at > first.updated_at
    assert len(services.ballots.list_ballots(voting_round.id)) == 1


def test_non_voter_rejected(services, voting_round, applications):
    with pytest.raises(AuthorizationError):
        services.ballots.cast_ballot(voting_round.id, str(uuid.uuid4()), {applications[0].id: 1})


def test_roster_check_precedes_phase_check(services, published_round, applications):
    # Round is UPCOMING here; an outsider still gets the authorization error.
    with pytest.raises(AuthorizationError):
        services.ballots.cast_ballot(published_round.id, str(uuid.uuid4()), {applications[0].id: 1})


def test_outside_voting_phase_conflicts(services, published_round, applications, voters, clock):
    with pytest.raises(ConflictError):
        services.ballots.cast_ballot(published_round.id, voters[0].user_id, {applications[0].id: 1})
    clock.set(DURING_RESULTS)
    with pytest.raises(ConflictError):
        services.ballots.cast_ballot(published_round.id, voters[0].user_id, {applications[0].id: 1})


def test_unknown_round(services, voters):
    with pytest.raises(NotFoundError):
        services.ballots.cast_ballot(str(uuid.uuid4()), voters[0].user_id, {})


def test_too_many_entries(services, voting_round, applications, voters):
    votes = {a.id: 1 for a in applications}
    with pytest.raises(ValidationError):
        services.ballots.cast_ballot(voting_round.id, voters[0].user_id, votes)


def test_entry_above_project_cap(services, voting_round, applications, voters):
    with pytest.raises(ValidationError):
        services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {applications[0].id: 11})


def test_application_from_another_round(services, voting_round, voters, admin):
    other = services.rounds.create_round("other-round", admin)
    foreign = services.applications.register_application(other.id, "Elsewhere")
    with pytest.raises(ValidationError) as exc_info:
        services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {foreign.id: 1})
    assert foreign.id in str(exc_info.value)


def test_rejected_ballot_keeps_previous(services, voting_round, applications, voters):
    a = applications[0]
    services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {a.id: 4})
    with pytest.raises(ValidationError):
        services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {a.id: 99})
    assert services.ballots.get_ballot(voting_round.id, voters[0].user_id).votes == {a.id: 4}


class TestValidateBallot:
    config = VotingConfig(max_votes_per_voter=2, max_votes_per_project_per_voter=10)

    def test_accepts_zero_and_fractional_votes(self):
        assert validate_ballot({"a": 0, "b": 2.5}, self.config) == []

    def test_empty_ballot(self):
        assert len(validate_ballot({}, self.config)) == 1

    @pytest.mark.parametrize("vote", [-1, "3", None, True, float("nan")])
    def test_rejects_non_numbers_and_negatives(self, vote):
        assert validate_ballot({"a": vote}, self.config)

    def test_minimum_applies_to_positive_votes_only(self):
        config = VotingConfig(
            max_votes_per_voter=3, max_votes_per_project_per_voter=10, min_votes_per_project_per_voter=2
        )
        assert validate_ballot({"a": 0, "b": 2}, config) == []
        assert len(validate_ballot({"a": 1}, config)) == 1


class TestBallotReports:
    def test_stats(self, services, voting_round, applications, voters, admin):
        services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {applications[0].id: 1})
        stats = services.ballots.ballot_stats(voting_round.id, admin.user_id)
        assert stats.number_of_voters == 3
        assert stats.number_of_ballots == 1

    def test_stats_admin_only(self, services, voting_round, voters):
        with pytest.raises(AuthorizationError):
            services.ballots.ballot_stats(voting_round.id, voters[0].user_id)

    def test_export_csv(self, services, voting_round, applications, voters, admin):
        a, b, _ = applications
        services.ballots.cast_ballot(voting_round.id, voters[0].user_id, {a.id: 5, b.id: 3})
        services.ballots.cast_ballot(voting_round.id, voters[1].user_id, {a.id: 2})

        df = pd.read_csv(io.StringIO(services.ballots.export_ballots_csv(voting_round.id, admin.user_id)))
        assert list(df.columns) == BALLOT_CSV_COLUMNS
        assert len(df) == 3
        assert set(df["Project Name"]) == {"Alpha", "Beta"}
