"""
Repository for membership records, group requests and authorizations.

Tables belong to the registration system; this worker only reads member
phones and authorizations and writes membership/request bookkeeping.
"""

from collections.abc import Iterable

from groupkeeper.db.helpers import execute_many, execute_query, fetch_all, fetch_one
from groupkeeper.features.group_membership.domain import (
    AuthorizationRecord,
    MemberPhone,
    MembershipStatus,
    Worker,
)
from groupkeeper.features.group_membership.domain.identity import digits_only
from groupkeeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MembershipRepository:
    """Persistence helpers for the membership lifecycle."""

    # ------------------------------------------------------------------
    # member_groups
    # ------------------------------------------------------------------

    @classmethod
    async def record_entry(
        cls,
        registration_id: int,
        phone_number: str,
        group_id: str,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> bool:
        """
        Record a member entering a group.

        Repeating the call while the membership is still open is a no-op.

        Returns:
            True if a new row was written
        """
        query = """
            INSERT INTO member_groups (registration_id, phone_number, group_id, status)
            SELECT %s, %s, %s, %s
            WHERE NOT EXISTS (
                SELECT 1 FROM member_groups
                WHERE registration_id = %s
                  AND phone_number = %s
                  AND group_id = %s
                  AND exit_date IS NULL
            )
        """
        params = (
            registration_id,
            phone_number,
            group_id,
            status.value,
            registration_id,
            phone_number,
            group_id,
        )
        inserted = await execute_query(query, params)
        return inserted > 0

    @classmethod
    async def record_exit(cls, phone_number: str, group_id: str, reason: str) -> int:
        """Close every open membership of `phone_number` in `group_id`."""
        query = """
            UPDATE member_groups
            SET updated_at = NOW(),
                exit_date = NOW(),
                status = %s,
                removal_reason = %s
            WHERE phone_number = %s
              AND group_id = %s
              AND exit_date IS NULL
        """
        return await execute_query(
            query, (MembershipStatus.INACTIVE.value, reason, phone_number, group_id)
        )

    # ------------------------------------------------------------------
    # group_requests
    # ------------------------------------------------------------------

    @classmethod
    async def mark_fulfilled(cls, request_id: int) -> bool:
        """Latch a request as fulfilled. Returns False if it already was."""
        query = """
            UPDATE group_requests
            SET fulfilled = true, last_attempt = NOW(), updated_at = NOW()
            WHERE id = %s AND fulfilled IS NOT TRUE
        """
        return await execute_query(query, (request_id,)) > 0

    @classmethod
    async def mark_attempt(cls, request_id: int) -> bool:
        """Count an unsuccessful attempt on a request that is not yet fulfilled."""
        query = """
            UPDATE group_requests
            SET no_of_attempts = no_of_attempts + 1,
                last_attempt = NOW(),
                updated_at = NOW()
            WHERE id = %s AND fulfilled IS NOT TRUE
        """
        return await execute_query(query, (request_id,)) > 0

    @classmethod
    async def set_failure_reason(cls, request_id: int, reason: str) -> None:
        query = """
            UPDATE group_requests
            SET failure_reason = %s, updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(query, (reason, request_id))

    # ------------------------------------------------------------------
    # registrations
    # ------------------------------------------------------------------

    @classmethod
    async def list_member_phones(cls, registration_id: int) -> list[MemberPhone]:
        """Member phones followed by legal representatives' phones."""
        query = """
            SELECT phone_number AS phone, FALSE AS is_legal_rep
            FROM phones
            WHERE registration_id = %s

            UNION ALL

            SELECT phone AS phone, TRUE AS is_legal_rep
            FROM legal_representatives
            WHERE registration_id = %s

            UNION ALL

            SELECT alternative_phone AS phone, TRUE AS is_legal_rep
            FROM legal_representatives
            WHERE registration_id = %s
              AND alternative_phone IS NOT NULL
        """
        rows = await fetch_all(query, (registration_id, registration_id, registration_id))
        return [
            MemberPhone(phone=row["phone"], is_legal_rep=bool(row["is_legal_rep"]))
            for row in rows
            if row.get("phone")
        ]

    # ------------------------------------------------------------------
    # workers & authorizations
    # ------------------------------------------------------------------

    @classmethod
    async def find_worker_by_phone(cls, phone: str) -> Worker | None:
        query = """
            SELECT id, worker_phone
            FROM whatsapp_workers
            WHERE regexp_replace(worker_phone, '\\D', '', 'g') = %s
            LIMIT 1
        """
        row = await fetch_one(query, (digits_only(phone),))
        if not row:
            return None
        return Worker(id=row["id"], phone=row["worker_phone"])

    @classmethod
    async def find_authorization(cls, last8: str, worker_id: int) -> AuthorizationRecord | None:
        """Authorization whose phone ends with `last8` for this worker."""
        query = """
            SELECT auth_id, phone_number, worker_id
            FROM whatsapp_authorization
            WHERE RIGHT(phone_number, 8) = %s AND worker_id = %s
            LIMIT 1
        """
        row = await fetch_one(query, (last8, worker_id))
        if not row:
            return None
        return AuthorizationRecord(
            phone_number=row["phone_number"],
            worker_id=row["worker_id"],
            auth_id=row.get("auth_id"),
        )

    @classmethod
    async def upsert_authorizations(cls, records: Iterable[AuthorizationRecord]) -> int:
        """Insert authorizations, touching updated_at on the ones that exist."""
        payload = [
            (digits_only(record.phone_number), record.worker_id)
            for record in records
            if digits_only(record.phone_number)
        ]
        if not payload:
            return 0

        query = """
            INSERT INTO whatsapp_authorization (phone_number, worker_id)
            VALUES (%s, %s)
            ON CONFLICT (phone_number, worker_id)
            DO UPDATE SET updated_at = NOW()
        """
        await execute_many(query, payload)

        logger.info("Authorizations upserted", record_count=len(payload))
        return len(payload)
