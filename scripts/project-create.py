#!/usr/bin/env python3
from __future__ import annotations

import argparse
from datetime import datetime

from db.session import init_db
from db.store import build_sql_engine
from workflow import Actor, Channel, Role, WorkflowError


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a content project at the first stage of its channel")
    parser.add_argument("--title", required=True)
    parser.add_argument("--channel", required=True, choices=[c.value for c in Channel])
    parser.add_argument("--due", type=datetime.fromisoformat, default=None, help="ISO date/time")
    parser.add_argument("--content-type", dest="content_type", choices=["VIDEO", "CREATIVE_ONLY"], default=None)
    parser.add_argument("--priority", choices=["HIGH", "NORMAL"], default="NORMAL")
    parser.add_argument("--actor-id", dest="actor_id", required=True)
    parser.add_argument("--actor-name", dest="actor_name", default=None)
    parser.add_argument("--role", default=Role.WRITER.value, choices=[r.value for r in Role])
    parser.add_argument("--init-db", dest="init_db", action="store_true", help="Create missing tables first")
    args = parser.parse_args()

    actor = Actor(id=args.actor_id, role=Role(args.role), name=args.actor_name or args.actor_id)
    if args.init_db:
        init_db()
    engine = build_sql_engine()
    try:
        project = engine.create(
            args.title,
            args.channel,
            args.due,
            actor,
            content_type=args.content_type,
            priority=args.priority,
        )
    except WorkflowError as exc:
        raise SystemExit(f"[workflow] {exc.code}: {exc.message}")
    print(
        f"[workflow] created id={project.id} channel={project.channel.value} "
        f"stage={project.current_stage.value} assigned={project.assigned_to_role.value}"
    )


if __name__ == "__main__":
    main()
