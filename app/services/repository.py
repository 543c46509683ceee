import json
from contextlib import contextmanager
from datetime import date
from typing import Any

from psycopg.types.json import Jsonb

ID_WIDTH = 3


def _flexible_name_sql(column: str, key: str) -> str:
    col = f"LOWER(TRIM(v.{column}))"
    return (
        f"(LENGTH({col}) > 0 AND ("
        f"{col} = %({key})s"
        f" OR POSITION(%({key})s IN {col}) > 0"
        f" OR POSITION({col} IN %({key})s) > 0"
        f" OR (LENGTH({col}) >= 4 AND LEFT({col}, 4) = LEFT(%({key})s, 4))"
        f"))"
    )


_EXACT_NAME_SQL = """
    LOWER(TRIM(v.first_name)) = %(first_name)s
    AND LOWER(TRIM(v.last_name)) = %(last_name)s
    AND COALESCE(LOWER(TRIM(v.middle_name)), '') = %(middle_name)s
    AND COALESCE(LOWER(TRIM(v.suffix)), '') = %(suffix)s
"""
_FLEXIBLE_NAME_SQL = f"{_flexible_name_sql('first_name', 'first_name')} AND {_flexible_name_sql('last_name', 'last_name')}"

VOTER_TIER_PREDICATES = {
    "exact": f"{_EXACT_NAME_SQL} AND v.birth_date = %(birth_date)s AND LOWER(v.gender) = %(gender)s",
    "flexible": f"{_FLEXIBLE_NAME_SQL} AND v.birth_date = %(birth_date)s AND LOWER(v.gender) = %(gender)s",
    "flexible_no_gender": f"{_FLEXIBLE_NAME_SQL} AND v.birth_date = %(birth_date)s",
    "flexible_no_birthdate": f"{_FLEXIBLE_NAME_SQL} AND LOWER(v.gender) = %(gender)s",
    "partial": """
        LEFT(LOWER(TRIM(v.first_name)), %(first_prefix_len)s) = %(first_prefix)s
        AND LEFT(LOWER(TRIM(v.last_name)), %(last_prefix_len)s) = %(last_prefix)s
    """,
}

TERM_COLUMNS = """
    term_id, term_name, start_date, end_date, status, is_active,
    completion_type, completed_at, completed_by, status_change_reason,
    created_by, created_at, updated_at
"""


class PostgresRepository:
    def __init__(self, conn):
        self.conn = conn

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    @contextmanager
    def savepoint(self):
        with self.conn.transaction():
            yield

    def next_id(self, prefix: str) -> str:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO "ID_Counters" (prefix, last_value)
                VALUES (%s, 1)
                ON CONFLICT (prefix) DO UPDATE
                SET last_value = "ID_Counters".last_value + 1,
                    updated_at = NOW()
                RETURNING last_value
                """,
                (prefix,),
            )
            value = cur.fetchone()["last_value"]
        return f"{prefix}{int(value):0{ID_WIDTH}d}"

    # -- voters ---------------------------------------------------------

    def find_voter_matches(self, tier: str, params: dict, limit: int = 5) -> list[dict]:
        predicate = VOTER_TIER_PREDICATES[tier]
        with self.savepoint():
            with self.conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT v.voter_id, v.first_name, v.last_name, v.middle_name, v.suffix,
                           v.birth_date, v.gender
                    FROM "Voters_List" v
                    WHERE v.is_active = TRUE
                      AND {predicate}
                    ORDER BY v.voter_id
                    LIMIT %(limit)s
                    """,
                    {**params, "limit": limit},
                )
                return [dict(row) for row in cur.fetchall() or []]

    # -- youth profiles and survey responses ----------------------------

    def find_youth_candidates(self, person: dict) -> list[dict]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT
                    yp.youth_id, yp.first_name, yp.last_name, yp.middle_name, yp.suffix,
                    yp.birth_date, yp.gender, yp.contact_number, yp.email, yp.barangay_id,
                    yp.validation_status, yp.validation_tier, u.user_id
                FROM "Youth_Profiling" yp
                LEFT JOIN "Users" u ON u.youth_id = yp.youth_id
                WHERE (
                    LOWER(TRIM(yp.first_name)) = %(first_name_key)s
                    AND LOWER(TRIM(yp.last_name)) = %(last_name_key)s
                    AND COALESCE(LOWER(TRIM(yp.middle_name)), '') = %(middle_name_key)s
                    AND COALESCE(LOWER(TRIM(yp.suffix)), '') = %(suffix_key)s
                    AND yp.birth_date = %(birth_date)s
                    AND yp.gender = %(gender)s
                )
                OR yp.contact_number = %(contact_number)s
                OR LOWER(yp.email) = %(email)s
                ORDER BY yp.created_at, yp.youth_id
                """,
                person,
            )
            return [dict(row) for row in cur.fetchall() or []]

    def insert_youth_profile(self, profile: dict) -> dict:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO "Youth_Profiling" (
                    youth_id, first_name, last_name, middle_name, suffix,
                    age, gender, contact_number, email, barangay_id, purok_zone, birth_date
                )
                VALUES (
                    %(youth_id)s, %(first_name)s, %(last_name)s, %(middle_name)s, %(suffix)s,
                    %(age)s, %(gender)s, %(contact_number)s, %(email)s, %(barangay_id)s,
                    %(purok_zone)s, %(birth_date)s
                )
                RETURNING youth_id, validation_status, created_at
                """,
                profile,
            )
            return dict(cur.fetchone())

    def insert_user(self, user_id: str, youth_id: str, user_type: str = "youth") -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                'INSERT INTO "Users" (user_id, youth_id, user_type) VALUES (%s, %s, %s)',
                (user_id, youth_id, user_type),
            )

    def mark_youth_validated(self, youth_id: str, *, tier: str, validated_by: str | None) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE "Youth_Profiling"
                SET validation_status = 'validated',
                    validation_tier = %s,
                    validated_by = %s,
                    validation_date = NOW(),
                    updated_at = NOW()
                WHERE youth_id = %s
                  AND (validation_status IS NULL OR validation_status <> 'validated')
                """,
                (tier, validated_by, youth_id),
            )

    def fetch_active_survey_batch(self) -> dict | None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT batch_id, batch_name, description, status
                FROM "KK_Survey_Batches"
                WHERE status = 'active'
                ORDER BY created_at DESC
                LIMIT 1
                """
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def fetch_response_statuses(self, youth_id: str, batch_id: str) -> list[str]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT validation_status
                FROM "KK_Survey_Responses"
                WHERE youth_id = %s AND batch_id = %s
                FOR UPDATE
                """,
                (youth_id, batch_id),
            )
            return [row["validation_status"] for row in cur.fetchall() or []]

    def insert_survey_response(self, response: dict) -> dict:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO "KK_Survey_Responses" (
                    response_id, batch_id, youth_id, barangay_id,
                    civil_status, youth_classification, youth_specific_needs, youth_age_group,
                    educational_background, work_status,
                    registered_sk_voter, registered_national_voter, attended_kk_assembly,
                    voted_last_sk, times_attended, reason_not_attended,
                    validation_status, validation_tier, validation_comments
                )
                VALUES (
                    %(response_id)s, %(batch_id)s, %(youth_id)s, %(barangay_id)s,
                    %(civil_status)s, %(youth_classification)s, %(youth_specific_needs)s, %(youth_age_group)s,
                    %(educational_background)s, %(work_status)s,
                    %(registered_sk_voter)s, %(registered_national_voter)s, %(attended_kk_assembly)s,
                    %(voted_last_sk)s, %(times_attended)s, %(reason_not_attended)s,
                    %(validation_status)s, %(validation_tier)s, %(validation_comments)s
                )
                RETURNING response_id, validation_status, validation_tier, created_at
                """,
                response,
            )
            return dict(cur.fetchone())

    def update_response_validation(
        self,
        response_id: str,
        *,
        status: str,
        validated_by: str | None,
        comments: str | None,
    ) -> dict | None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE "KK_Survey_Responses"
                SET validation_status = %s,
                    validated_by = %s,
                    validation_date = NOW(),
                    validation_comments = COALESCE(%s, validation_comments),
                    updated_at = NOW()
                WHERE response_id = %s
                RETURNING response_id, youth_id, batch_id, validation_status, validation_date
                """,
                (status, validated_by, comments, response_id),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    # -- validation queue -----------------------------------------------

    def insert_validation_queue(self, entry: dict) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO "Validation_Queue" (
                    queue_id, response_id, youth_id, voter_match_type, validation_score, validation_comments
                )
                VALUES (
                    %(queue_id)s, %(response_id)s, %(youth_id)s, %(voter_match_type)s,
                    %(validation_score)s, %(validation_comments)s
                )
                """,
                entry,
            )

    def fetch_validation_queue_items(
        self,
        *,
        voter_match_type: str | None = None,
        barangay_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        where_clauses = []
        params: list = []
        if voter_match_type:
            where_clauses.append("vq.voter_match_type = %s")
            params.append(voter_match_type)
        if barangay_id:
            where_clauses.append("yp.barangay_id = %s")
            params.append(barangay_id)

        where_sql = ""
        if where_clauses:
            where_sql = "WHERE " + " AND ".join(where_clauses)

        params.extend([limit, offset])
        query = f"""
            SELECT
                vq.queue_id, vq.response_id, vq.youth_id, vq.voter_match_type,
                vq.validation_score, vq.validation_comments, vq.created_at,
                ksr.batch_id, ksr.validation_status,
                yp.first_name, yp.last_name, yp.middle_name, yp.suffix, yp.barangay_id
            FROM "Validation_Queue" vq
            LEFT JOIN "KK_Survey_Responses" ksr ON ksr.response_id = vq.response_id
            LEFT JOIN "Youth_Profiling" yp ON yp.youth_id = vq.youth_id
            {where_sql}
            ORDER BY vq.created_at DESC, vq.queue_id DESC
            LIMIT %s OFFSET %s
        """
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return [dict(row) for row in cur.fetchall() or []]

    def get_validation_queue_item(self, queue_id: str) -> dict | None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT
                    vq.queue_id, vq.response_id, vq.youth_id, vq.voter_match_type,
                    vq.validation_score, vq.validation_comments,
                    ksr.batch_id, ksr.validation_status,
                    yp.first_name, yp.last_name, yp.barangay_id
                FROM "Validation_Queue" vq
                LEFT JOIN "KK_Survey_Responses" ksr ON ksr.response_id = vq.response_id
                LEFT JOIN "Youth_Profiling" yp ON yp.youth_id = vq.youth_id
                WHERE vq.queue_id = %s
                FOR UPDATE OF vq
                """,
                (queue_id,),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def delete_validation_queue_item(self, queue_id: str) -> None:
        with self.conn.cursor() as cur:
            cur.execute('DELETE FROM "Validation_Queue" WHERE queue_id = %s', (queue_id,))

    # -- SK terms -------------------------------------------------------

    def list_terms(self, status: str | None = None) -> list[dict]:
        params: list = []
        status_sql = ""
        if status:
            status_sql = "AND status = %s"
            params.append(status)
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {TERM_COLUMNS}
                FROM "SK_Terms"
                WHERE is_active = TRUE {status_sql}
                ORDER BY start_date DESC
                """,
                params,
            )
            return [dict(row) for row in cur.fetchall() or []]

    def get_term(self, term_id: str, *, for_update: bool = False) -> dict | None:
        lock_sql = "FOR UPDATE" if for_update else ""
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {TERM_COLUMNS}
                FROM "SK_Terms"
                WHERE term_id = %s AND is_active = TRUE
                {lock_sql}
                """,
                (term_id,),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def fetch_active_terms(self, exclude_term_id: str | None = None) -> list[dict]:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {TERM_COLUMNS}
                FROM "SK_Terms"
                WHERE status = 'active'
                  AND is_active = TRUE
                  AND (%(exclude)s::text IS NULL OR term_id <> %(exclude)s::text)
                ORDER BY start_date
                """,
                {"exclude": exclude_term_id},
            )
            return [dict(row) for row in cur.fetchall() or []]

    def count_active_terms(self) -> int:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT COUNT(*)::int AS count
                FROM "SK_Terms"
                WHERE status = 'active' AND is_active = TRUE
                """
            )
            row = cur.fetchone() or {}
        return int(row.get("count", 0) or 0)

    def find_terms_by_name(self, term_name: str, exclude_term_id: str | None = None) -> list[dict]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT term_id, term_name, status
                FROM "SK_Terms"
                WHERE LOWER(term_name) = LOWER(%(term_name)s)
                  AND is_active = TRUE
                  AND (%(exclude)s::text IS NULL OR term_id <> %(exclude)s::text)
                """,
                {"term_name": term_name.strip(), "exclude": exclude_term_id},
            )
            return [dict(row) for row in cur.fetchall() or []]

    def find_overlapping_terms(
        self,
        start_date: date,
        end_date: date,
        exclude_term_id: str | None = None,
    ) -> list[dict]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT term_id, term_name, start_date, end_date, status
                FROM "SK_Terms"
                WHERE start_date <= %(end_date)s
                  AND end_date >= %(start_date)s
                  AND status <> 'completed'
                  AND is_active = TRUE
                  AND (%(exclude)s::text IS NULL OR term_id <> %(exclude)s::text)
                ORDER BY start_date
                """,
                {"start_date": start_date, "end_date": end_date, "exclude": exclude_term_id},
            )
            return [dict(row) for row in cur.fetchall() or []]

    def fetch_non_completed_terms(self) -> list[dict]:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {TERM_COLUMNS}
                FROM "SK_Terms"
                WHERE status <> 'completed' AND is_active = TRUE
                ORDER BY end_date DESC
                """
            )
            return [dict(row) for row in cur.fetchall() or []]

    def insert_term(self, term: dict) -> dict:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO "SK_Terms" (
                    term_id, term_name, start_date, end_date, status, is_current,
                    created_by, last_status_change_at, last_status_change_by, status_change_reason
                )
                VALUES (
                    %(term_id)s, %(term_name)s, %(start_date)s, %(end_date)s, %(status)s,
                    %(status)s = 'active', %(created_by)s, NOW(), %(created_by)s, %(status_change_reason)s
                )
                RETURNING {TERM_COLUMNS}
                """,
                term,
            )
            return dict(cur.fetchone())

    def update_term_fields(self, term_id: str, fields: dict) -> dict | None:
        allowed = ("term_name", "start_date", "end_date")
        assignments = [f"{name} = %({name})s" for name in allowed if name in fields]
        if not assignments:
            return self.get_term(term_id)
        assignments.append("updated_at = NOW()")
        params = {name: fields[name] for name in allowed if name in fields}
        params["term_id"] = term_id
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE "SK_Terms"
                SET {", ".join(assignments)}
                WHERE term_id = %(term_id)s
                RETURNING {TERM_COLUMNS}
                """,
                params,
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def soft_delete_term(self, term_id: str) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE "SK_Terms"
                SET is_active = FALSE, updated_at = NOW()
                WHERE term_id = %s AND is_active = TRUE
                """,
                (term_id,),
            )
            return cur.rowcount > 0

    def activate_term(
        self,
        term_id: str,
        *,
        start_date: date | None,
        changed_by: str | None,
        reason: str,
    ) -> dict | None:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE "SK_Terms"
                SET status = 'active',
                    is_current = TRUE,
                    start_date = COALESCE(%(start_date)s, start_date),
                    last_status_change_at = NOW(),
                    last_status_change_by = %(changed_by)s,
                    status_change_reason = %(reason)s,
                    updated_at = NOW()
                WHERE term_id = %(term_id)s AND status = 'upcoming'
                RETURNING {TERM_COLUMNS}
                """,
                {"term_id": term_id, "start_date": start_date, "changed_by": changed_by, "reason": reason},
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def complete_term(
        self,
        term_id: str,
        *,
        end_date: date | None,
        completion_type: str,
        completed_by: str | None,
        reason: str,
    ) -> dict | None:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE "SK_Terms"
                SET status = 'completed',
                    is_current = FALSE,
                    end_date = COALESCE(%(end_date)s, end_date),
                    completion_type = %(completion_type)s,
                    completed_at = NOW(),
                    completed_by = %(completed_by)s,
                    last_status_change_at = NOW(),
                    last_status_change_by = %(completed_by)s,
                    status_change_reason = %(reason)s,
                    updated_at = NOW()
                WHERE term_id = %(term_id)s AND status = 'active'
                RETURNING {TERM_COLUMNS}
                """,
                {
                    "term_id": term_id,
                    "end_date": end_date,
                    "completion_type": completion_type,
                    "completed_by": completed_by,
                    "reason": reason,
                },
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def fetch_terms_due_for_activation(self, today: date) -> list[dict]:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {TERM_COLUMNS}
                FROM "SK_Terms"
                WHERE status = 'upcoming' AND start_date = %s AND is_active = TRUE
                ORDER BY start_date, term_id
                FOR UPDATE
                """,
                (today,),
            )
            return [dict(row) for row in cur.fetchall() or []]

    def fetch_terms_due_for_completion(self, today: date) -> list[dict]:
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {TERM_COLUMNS}
                FROM "SK_Terms"
                WHERE status = 'active' AND end_date < %s AND is_active = TRUE
                ORDER BY end_date, term_id
                FOR UPDATE
                """,
                (today,),
            )
            return [dict(row) for row in cur.fetchall() or []]

    # -- SK officials ---------------------------------------------------

    def count_term_officials(self, term_id: str, *, active_only: bool = False) -> int:
        active_sql = "AND is_active = TRUE" if active_only else ""
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT COUNT(*)::int AS count
                FROM "SK_Officials"
                WHERE term_id = %s {active_sql}
                """,
                (term_id,),
            )
            row = cur.fetchone() or {}
        return int(row.get("count", 0) or 0)

    def revoke_official_access(self, term_ids: list[str], updated_by: str | None) -> list[dict]:
        if not term_ids:
            return []
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE "SK_Officials"
                SET account_access = FALSE,
                    account_access_updated_at = NOW(),
                    account_access_updated_by = %s
                WHERE term_id = ANY(%s) AND account_access = TRUE
                RETURNING sk_id, term_id, first_name, last_name, email
                """,
                (updated_by, list(term_ids)),
            )
            return [dict(row) for row in cur.fetchall() or []]

    # -- audit logs and notifications -----------------------------------

    def insert_activity_log(self, entry: dict[str, Any]) -> None:
        payload = dict(entry)
        details = payload.get("details")
        if details is not None and not isinstance(details, str):
            payload["details"] = Jsonb(json.loads(json.dumps(details, default=str)))
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO "Activity_Logs" (
                    log_id, user_id, user_type, action, resource, resource_id,
                    resource_name, details, category, status
                )
                VALUES (
                    %(log_id)s, %(user_id)s, %(user_type)s, %(action)s, %(resource)s, %(resource_id)s,
                    %(resource_name)s, %(details)s, %(category)s, %(status)s
                )
                """,
                payload,
            )

    def fetch_active_admin_ids(self) -> list[str]:
        with self.conn.cursor() as cur:
            cur.execute('SELECT lydo_id FROM "LYDO" WHERE is_active = TRUE ORDER BY lydo_id')
            return [row["lydo_id"] for row in cur.fetchall() or []]

    def insert_notification(self, notification: dict) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO "Notifications" (
                    notification_id, user_id, user_type, title, message, type, priority
                )
                VALUES (
                    %(notification_id)s, %(user_id)s, %(user_type)s, %(title)s, %(message)s,
                    %(type)s, %(priority)s
                )
                """,
                notification,
            )
