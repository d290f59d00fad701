#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

from fastapi.encoders import jsonable_encoder

from db.store import build_sql_engine
from workflow import Channel, Role, TaskStatus, WorkflowError
from workflow.dashboard import workload


def main() -> None:
    parser = argparse.ArgumentParser(description="Show a project with its history, or list projects")
    parser.add_argument("--project-id", dest="project_id", default=None)
    parser.add_argument("--channel", default=None, choices=[c.value for c in Channel])
    parser.add_argument("--status", default=None, choices=[s.value for s in TaskStatus])
    parser.add_argument("--role", default=None, choices=[r.value for r in Role])
    parser.add_argument("--summary", action="store_true", help="Print workload counts instead of rows")
    args = parser.parse_args()

    engine = build_sql_engine()
    if args.project_id:
        try:
            project = engine.get(args.project_id)
        except WorkflowError as exc:
            raise SystemExit(f"[workflow] {exc.code}: {exc.message}")
        print(json.dumps(jsonable_encoder(project), ensure_ascii=True, indent=2))
        return

    projects = engine.list_projects(
        channel=Channel(args.channel) if args.channel else None,
        status=TaskStatus(args.status) if args.status else None,
        assigned_to_role=Role(args.role) if args.role else None,
    )
    if args.summary:
        print(json.dumps(workload(projects), ensure_ascii=True, indent=2))
        return
    if not projects:
        print("[workflow] no projects")
        return
    for project in projects:
        print(
            f"[workflow] id={project.id} channel={project.channel.value} stage={project.current_stage.value} "
            f"assigned={project.assigned_to_role.value} status={project.status.value} title={project.title!r}"
        )


if __name__ == "__main__":
    main()
