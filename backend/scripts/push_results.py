"""CLI helper for publishing category winners to DerbyNet."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List

from derbyvote_core import DataStore, PushCoordinator, PushSummary, Settings, SyncClient
from derbyvote_core.errors import ConflictError, DerbyVoteError


def _format_summary(summary: PushSummary) -> str:
    lines = [
        f"Winners pushed: {summary.winners_pushed}",
        f"Awards created: {summary.awards_created}",
        f"Categories skipped: {summary.skipped}",
    ]
    for detail in summary.details:
        suffix = f" ({detail.message})" if detail.message else ""
        lines.append(f"  - {detail.category_name}: {detail.status}{suffix}")
    return "\n".join(lines)


def _format_conflicts(exc: ConflictError) -> str:
    lines: List[str] = []
    for tie in exc.ties:
        cars = ", ".join(f"#{car.car_number} ({car.vote_count})" for car in tie.tied_cars)
        lines.append(f"  - tie in {tie.category_name}: {cars}")
    for conflict in exc.multiple_wins:
        awards = ", ".join(conflict.awards_won)
        lines.append(
            f"  - car #{conflict.car_number} wins {len(conflict.awards_won)} awards in "
            f"{conflict.group_name} (limit {conflict.max_wins_per_car}): {awards}"
        )
    return "\n".join(lines)


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--url", default="", help="DerbyNet base URL (defaults to the saved or configured URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="log DerbyNet requests and responses")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = Settings.from_env()
    store = DataStore(data_dir=settings.data_dir)
    with SyncClient(
        base_url=settings.derbynet_url,
        role=settings.derbynet_role,
        password=settings.derbynet_password,
        timeout=settings.timeout,
    ) as client:
        try:
            summary = PushCoordinator(store, client, settings).push_results(args.url or None)
        except ConflictError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            conflicts = _format_conflicts(exc)
            if conflicts:
                print(conflicts, file=sys.stderr)
            return 1
        except DerbyVoteError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            if exc.summary is not None:
                print(_format_summary(exc.summary), file=sys.stderr)
            return 1

    print(_format_summary(summary))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
