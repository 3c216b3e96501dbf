"""
Tests for the voter roster: admin-only edits, wholesale replacement, publish lock.
"""

import uuid

import pytest

from rpgf.errors import AuthorizationError, ConflictError, ValidationError
from rpgf.models import RoundPhase, VotingConfig
from rpgf.tests.conftest import VOTER_WALLETS
from rpgf.voting.roster import normalize_wallet_addresses


def test_set_voters_returns_roster(services, round_, admin):
    voters = services.roster.set_round_voters(round_.id, VOTER_WALLETS, admin.user_id)
    assert [v.wallet_address for v in voters] == VOTER_WALLETS
    assert all(services.roster.is_voter(round_.id, v.user_id) for v in voters)


def test_replacement_is_wholesale(services, round_, admin):
    first = services.roster.set_round_voters(round_.id, ["0xa", "0xb"], admin.user_id)
    services.roster.set_round_voters(round_.id, ["0xc"], admin.user_id)

    current = services.roster.get_round_voters(round_.id, admin.user_id)
    assert [v.wallet_address for v in current] == ["0xc"]
    assert not services.roster.is_voter(round_.id, first[0].user_id)


def test_same_wallet_keeps_user_id(services, round_, admin):
    first = services.roster.set_round_voters(round_.id, ["0xa"], admin.user_id)
    second = services.roster.set_round_voters(round_.id, ["0xA", "0xb"], admin.user_id)
    assert second[0].user_id == first[0].user_id


def test_empty_roster_allowed(services, round_, admin):
    assert services.roster.set_round_voters(round_.id, [], admin.user_id) == []


def test_non_admin_rejected(services, round_):
    with pytest.raises(AuthorizationError):
        services.roster.set_round_voters(round_.id, VOTER_WALLETS, str(uuid.uuid4()))
    with pytest.raises(AuthorizationError):
        services.roster.get_round_voters(round_.id, str(uuid.uuid4()))


def test_frozen_after_publish(services, published_round, admin):
    with pytest.raises(ConflictError):
        services.roster.set_round_voters(published_round.id, ["0xnew"], admin.user_id)


def test_duplicate_wallets_rejected():
    with pytest.raises(ValidationError):
        normalize_wallet_addresses(["0xA", "0xa"])


def test_allowed_voter_count_caps_roster(services, round_, admin):
    services.rounds.update_voting_config(
        round_.id,
        VotingConfig(max_votes_per_voter=2, max_votes_per_project_per_voter=10, allowed_voter_count=2),
        admin.user_id,
    )
    with pytest.raises(ValidationError):
        services.roster.set_round_voters(round_.id, VOTER_WALLETS, admin.user_id)
    assert services.roster.get_round_voters(round_.id, admin.user_id) == []


def test_failed_update_leaves_previous_roster(services, round_, admin):
    services.roster.set_round_voters(round_.id, ["0xa"], admin.user_id)
    with pytest.raises(ValidationError):
        services.roster.set_round_voters(round_.id, ["0xb", "0xB"], admin.user_id)
    current = services.roster.get_round_voters(round_.id, admin.user_id)
    assert [v.wallet_address for v in current] == ["0xa"]


def test_voter_with_ballot_cannot_be_dropped(services, round_, applications, voters, admin):
    # A forced VOTING phase admits a ballot; forcing DRAFT then reopens the roster.
    services.rounds.force_round_phase(round_.slug, RoundPhase.VOTING)
    services.ballots.cast_ballot(round_.id, voters[0].user_id, {applications[0].id: 2})
    services.rounds.force_round_phase(round_.slug, RoundPhase.DRAFT)

    with pytest.raises(ConflictError):
        services.roster.set_round_voters(round_.id, VOTER_WALLETS[1:], admin.user_id)
    current = services.roster.get_round_voters(round_.id, admin.user_id)
    assert [v.wallet_address for v in current] == VOTER_WALLETS

    # Voters without ballots may still be removed.
    kept = services.roster.set_round_voters(round_.id, VOTER_WALLETS[:1], admin.user_id)
    assert [v.user_id for v in kept] == [voters[0].user_id]
