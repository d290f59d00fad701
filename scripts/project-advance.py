#!/usr/bin/env python3
from __future__ import annotations

import argparse

from db.store import build_sql_engine
from workflow import Actor, Role, WorkflowError, WorkflowStage


def main() -> None:
    parser = argparse.ArgumentParser(description="Move a project through its workflow")
    parser.add_argument("--project-id", dest="project_id", required=True)
    parser.add_argument(
        "--action",
        required=True,
        choices=["submit", "approve", "reject", "reject-completely"],
    )
    parser.add_argument("--actor-id", dest="actor_id", required=True)
    parser.add_argument("--actor-name", dest="actor_name", default=None)
    parser.add_argument("--role", required=True, choices=[r.value for r in Role])
    parser.add_argument("--target", default=None, help="Rework stage for --action reject")
    parser.add_argument("--comment", default=None)
    parser.add_argument("--expect-stage", dest="expect_stage", default=None, choices=[s.value for s in WorkflowStage])
    args = parser.parse_args()

    actor = Actor(id=args.actor_id, role=Role(args.role), name=args.actor_name or args.actor_id)
    expected = WorkflowStage(args.expect_stage) if args.expect_stage else None
    engine = build_sql_engine()
    try:
        if args.action == "submit":
            project = engine.submit(args.project_id, actor, args.comment, expected_stage=expected)
        elif args.action == "approve":
            project = engine.approve(args.project_id, actor, args.comment, expected_stage=expected)
        elif args.action == "reject":
            if not args.target:
                raise SystemExit("--target is required when action=reject")
            project = engine.reject(args.project_id, actor, args.target.upper(), args.comment, expected_stage=expected)
        else:
            project = engine.reject_completely(args.project_id, actor, args.comment, expected_stage=expected)
    except WorkflowError as exc:
        raise SystemExit(f"[workflow] {exc.code}: {exc.message}")

    print(
        f"[workflow] {args.action} id={project.id} stage={project.current_stage.value} "
        f"assigned={project.assigned_to_role.value} status={project.status.value}"
    )


if __name__ == "__main__":
    main()
