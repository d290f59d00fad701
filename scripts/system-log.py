#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from db.store import build_sql_engine


def main() -> None:
    parser = ArgumentParser(description="Print the newest system log entries")
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--actor-id", dest="actor_id", default=None)
    args = parser.parse_args()

    engine = build_sql_engine()
    entries = engine.system_logs(limit=max(1, args.limit), actor_id=args.actor_id)
    for entry in entries:
        print(
            f"[system-log] {entry.timestamp.isoformat()} {entry.action} "
            f"actor={entry.actor_name} ({entry.actor_role.value}) {entry.details}"
        )
    print(f"[system-log] {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")


if __name__ == "__main__":
    main()
