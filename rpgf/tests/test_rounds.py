"""
Tests for round creation, publishing and the testing-only phase override.
"""

import uuid

import pytest

from rpgf.config import RPGFConfig
from rpgf.core import build_services
from rpgf.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from rpgf.models import Identity, RoundPhase, VotingConfig
from rpgf.tests.conftest import DURING_VOTING, SCHEDULE


def test_creator_is_admin(services, round_, admin):
    assert round_.is_admin(admin.user_id)
    assert "0xadmin" in round_.admin_wallet_addresses
    assert round_.published is False


def test_new_round_is_draft(services, round_):
    assert services.rounds.current_phase(round_.id) == RoundPhase.DRAFT


def test_duplicate_slug_conflicts(services, round_, admin):
    with pytest.raises(ConflictError):
        services.rounds.create_round("test-round", admin)


def test_extra_admins_are_registered(services, admin):
    r = services.rounds.create_round("two-admins", admin, admin_wallet_addresses=["0xOTHER"])
    assert r.admin_wallet_addresses == frozenset({"0xadmin", "0xother"})


def test_publish_requires_schedule_and_voting_config(services, admin):
    r = services.rounds.create_round("bare", admin)
    with pytest.raises(ValidationError) as exc_info:
        services.rounds.publish_round(r.id, admin.user_id)
    assert len(exc_info.value.messages) == 2


def test_publish_flips_flag_once(services, round_, admin):
    published = services.rounds.publish_round(round_.id, admin.user_id)
    assert published.published is True
    with pytest.raises(ConflictError):
        services.rounds.publish_round(round_.id, admin.user_id)


def test_non_admin_cannot_publish(services, round_):
    with pytest.raises(AuthorizationError):
        services.rounds.publish_round(round_.id, str(uuid.uuid4()))


def test_published_round_config_is_frozen(services, round_, admin):
    services.rounds.publish_round(round_.id, admin.user_id)
    with pytest.raises(ConflictError):
        services.rounds.update_schedule(round_.id, SCHEDULE, admin.user_id)
    with pytest.raises(ConflictError):
        services.rounds.update_voting_config(
            round_.id, VotingConfig(max_votes_per_voter=1, max_votes_per_project_per_voter=1), admin.user_id
        )


def test_invalid_voting_config_rejected(services, round_, admin):
    with pytest.raises(ValidationError):
        services.rounds.update_voting_config(
            round_.id, VotingConfig(max_votes_per_voter=0, max_votes_per_project_per_voter=1), admin.user_id
        )


def test_unknown_round_not_found(services):
    with pytest.raises(NotFoundError):
        services.rounds.get_round(str(uuid.uuid4()))


class TestForceRoundPhase:
    def test_disabled_by_default(self, database, clock, round_):
        services = build_services(RPGFConfig(), database, clock)
        with pytest.raises(AuthorizationError):
            services.rounds.force_round_phase("test-round", RoundPhase.VOTING)

    def test_forcing_voting_publishes_round(self, services, round_):
        r = services.rounds.force_round_phase("test-round", RoundPhase.VOTING)
        assert r.published is True
        assert services.rounds.current_phase(r.id) == RoundPhase.VOTING

    def test_forcing_draft_unpublishes_round(self, services, round_, admin):
        services.rounds.publish_round(round_.id, admin.user_id)
        r = services.rounds.force_round_phase("test-round", RoundPhase.DRAFT)
        assert r.published is False
        assert services.rounds.current_phase(r.id) == RoundPhase.DRAFT

    def test_clearing_override_restores_clock(self, services, round_, admin, clock):
        services.rounds.publish_round(round_.id, admin.user_id)
        clock.set(DURING_VOTING)
        services.rounds.force_round_phase("test-round", RoundPhase.RESULTS)
        assert services.rounds.current_phase(round_.id) == RoundPhase.RESULTS
        services.rounds.force_round_phase("test-round", None)
        assert services.rounds.current_phase(round_.id) == RoundPhase.VOTING

    def test_unknown_slug(self, services):
        with pytest.raises(NotFoundError):
            services.rounds.force_round_phase("missing", RoundPhase.VOTING)
