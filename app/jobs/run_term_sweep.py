import argparse
import json
from datetime import date

from app.db import get_connection
from app.services.repository import PostgresRepository
from app.services.sk_terms import get_pending_status_updates
from app.services.term_scheduler import run_sweep_once


def main():
    parser = argparse.ArgumentParser(description="Run the SK term status sweep directly against the database")
    parser.add_argument("--date", help="Run as if today were this date (YYYY-MM-DD)")
    parser.add_argument("--dry-run", action="store_true", help="Only list terms that need a status change")
    args = parser.parse_args()

    today = date.fromisoformat(args.date) if args.date else None

    with get_connection() as conn:
        repo = PostgresRepository(conn)
        if args.dry_run:
            pending = get_pending_status_updates(repo, today)
            output = {
                "pending": [
                    {"term_id": term["term_id"], "term_name": term["term_name"], "required_action": term["required_action"]}
                    for term in pending
                ]
            }
        else:
            result = run_sweep_once(repo, today)
            output = {
                "run_date": result.run_date.isoformat(),
                "success": result.success,
                "skipped": result.skipped,
                "activated": [term["term_id"] for term in result.activated],
                "completed": [term["term_id"] for term in result.completed],
                "officials_affected": len(result.officials_affected),
                "errors": result.errors,
            }

    print(json.dumps(output, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
