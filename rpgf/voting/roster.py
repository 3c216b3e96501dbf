"""
rpgf/voting/roster.py: The set of wallets entitled to vote in a round.

Roster rules:
    - Only round admins may read or replace the roster.
    - The roster is frozen once the round is published.
    - Replacement is wholesale (delete-all, insert-new) inside one transaction.
    - A voter who already holds a ballot is never dropped. Normally the
      publish lock keeps ballots and roster edits apart, but the testing phase
      override can un-publish a round that already has ballots.
"""

import logging
from typing import Iterable

from rpgf.errors import ConflictError, ValidationError
from rpgf.models import AuditLogAction, RoundVoter
from rpgf.rounds.service import load_round, require_round_admin
from rpgf.storage.repositories import (
    AuditLogRepository,
    BallotRepository,
    UserRepository,
    VoterRepository,
)
from rpgf.storage.session import Database

logger = logging.getLogger(__name__)


def normalize_wallet_addresses(wallet_addresses: Iterable[str]) -> list[str]:
    """
    Lowercase and strip every address, rejecting duplicates.

    Raises:
        ValidationError: Two entries collapse to the same address, or one is blank.
    """
    normalized = [w.strip().lower() for w in wallet_addresses]
    if any(not w for w in normalized):
        raise ValidationError("Wallet addresses must not be blank.")
    if len(set(normalized)) != len(normalized):
        raise ValidationError("Duplicate wallet addresses are not allowed.")
    return normalized


class VoterRoster:
    def __init__(self, database: Database):
        self.database = database

    def set_round_voters(
        self,
        round_id: str,
        wallet_addresses: Iterable[str],
        requesting_user_id: str,
    ) -> list[RoundVoter]:
        """
        Replace the round's voter roster.

        Args:
            round_id:           Target round.
            wallet_addresses:   Full new roster; order is irrelevant.
            requesting_user_id: Must be an admin of the round.

        Returns:
            The new roster with resolved wallet addresses.

        Raises:
            NotFoundError:      Round does not exist.
            AuthorizationError: Requester is not a round admin.
            ConflictError:      Round is published, or a dropped voter has a ballot.
            ValidationError:    Duplicate addresses, or more than allowed_voter_count.
        """
        wallet_addresses = list(wallet_addresses)
        logger.info(
            "Setting %d round voter(s) for round %s (requested by %s)",
            len(wallet_addresses), round_id, requesting_user_id,
        )

        with self.database.transaction() as session:
            round_ = require_round_admin(
                session, round_id, requesting_user_id,
                action="modify this round's voters", for_update=True,
            )
            if round_.published:
                logger.error("Round voters can no longer be edited for round %s", round_id)
                raise ConflictError("Round voters can no longer be edited for this round.")

            normalized = normalize_wallet_addresses(wallet_addresses)
            cap = round_.voting_config.allowed_voter_count if round_.voting_config else None
            if cap is not None and len(normalized) > cap:
                raise ValidationError(
                    f"A maximum of {cap} voters is allowed for this round; got {len(normalized)}."
                )

            users = UserRepository(session)
            new_voters = [users.get_or_create_by_wallet(w) for w in normalized]
            new_ids = {v.user_id for v in new_voters}

            voters = VoterRepository(session)
            dropped = voters.user_ids(round_id) - new_ids
            if dropped:
                with_ballots = BallotRepository(session).voters_with_ballots(round_id, dropped)
                if with_ballots:
                    logger.error(
                        "Refusing to remove %d voter(s) with ballots from round %s",
                        len(with_ballots), round_id,
                    )
                    raise ConflictError("Cannot remove voters that have already submitted a ballot.")

            voters.replace(round_id, [v.user_id for v in new_voters])
            AuditLogRepository(session).add(
                round_id, AuditLogAction.ROUND_VOTERS_CHANGED, requesting_user_id,
                {"walletAddresses": normalized},
            )
            return [RoundVoter(user_id=v.user_id, wallet_address=v.wallet_address) for v in new_voters]

    def get_round_voters(self, round_id: str, requesting_user_id: str) -> list[RoundVoter]:
        with self.database.transaction() as session:
            require_round_admin(session, round_id, requesting_user_id, action="view this round's voters")
            return VoterRepository(session).list_for_round(round_id)

    def is_voter(self, round_id: str, user_id: str) -> bool:
        with self.database.transaction() as session:
            load_round(session, round_id)
            return VoterRepository(session).is_voter(round_id, user_id)
