from typing import Callable, TypeVar

import psycopg

from app.services.errors import ServiceError, conflict_from_integrity_error

T = TypeVar("T")


def run_in_transaction(repo, operation: Callable[[], T]) -> T:
    """Run ``operation`` and commit; roll back and re-raise on any failure.

    Unique violations surface as ``DuplicateConflictError``.
    """
    try:
        result = operation()
        repo.commit()
    except ServiceError:
        repo.rollback()
        raise
    except psycopg.Error as exc:
        repo.rollback()
        conflict = conflict_from_integrity_error(exc)
        if conflict is not None:
            raise conflict from exc
        raise
    except Exception:
        repo.rollback()
        raise
    return result
