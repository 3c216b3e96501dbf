"""
rpgf/audit/service.py: Read a round's audit log, newest entry first.

Pagination is keyset-based on the entry id: each page returns `next`, the id
of its oldest entry as a string, and the following request passes it back to
continue below that id. `next` is None on the last page.
"""

import logging
from typing import Optional

from rpgf.config import DEFAULT_CONFIG, RPGFConfig
from rpgf.errors import ValidationError
from rpgf.models import AuditLogPage
from rpgf.rounds.service import require_round_admin
from rpgf.storage.repositories import AuditLogRepository
from rpgf.storage.session import Database

logger = logging.getLogger(__name__)


def _parse_cursor(cursor: Optional[str]) -> Optional[int]:
    if cursor is None or cursor == "":
        return None
    try:
        value = int(cursor)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid pagination cursor '{cursor}'.")
    if value < 1:
        raise ValidationError(f"Invalid pagination cursor '{cursor}'.")
    return value


class AuditLogService:
    """
    Args:
        database: Database providing the transactional boundary.
        config:   RPGFConfig; supplies the default and maximum page sizes.
    """

    def __init__(self, database: Database, config: RPGFConfig = DEFAULT_CONFIG):
        self.database = database
        self.config = config

    def list_logs(
        self,
        round_id: str,
        requesting_user_id: Optional[str],
        limit: Optional[int] = None,
        next_cursor: Optional[str] = None,
    ) -> AuditLogPage:
        """
        One page of the round's audit log.

        Raises:
            NotFoundError:      Round does not exist.
            AuthorizationError: Requester is not a round admin.
            ValidationError:    limit out of range, or a malformed cursor.
        """
        if limit is None:
            limit = self.config.audit_log_page_size
        if limit < 1 or limit > self.config.max_audit_log_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self.config.max_audit_log_page_size}."
            )
        before_id = _parse_cursor(next_cursor)

        with self.database.transaction() as session:
            require_round_admin(session, round_id, requesting_user_id, action="view this round's logs")
            logs = AuditLogRepository(session).list_for_round(round_id, limit + 1, before_id)

        has_next = len(logs) > limit
        logs = logs[:limit]
        logger.debug("Read %d audit log entries for round %s", len(logs), round_id)
        return AuditLogPage(logs=logs, next=str(logs[-1].id) if has_next else None)
