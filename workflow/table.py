from __future__ import annotations

from dataclasses import dataclass
import json
import os
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from .errors import InvalidChannelError, InvalidStageForChannelError
from .types import APPROVER_ROLES, READ_ONLY_ROLES, Channel, Role, WorkflowStage


@dataclass(frozen=True)
class WorkflowStep:
    stage: WorkflowStage
    role: Role


def _steps(*pairs: tuple[WorkflowStage, Role]) -> tuple[WorkflowStep, ...]:
    return tuple(WorkflowStep(stage, role) for stage, role in pairs)


_VIDEO_SEQUENCE = _steps(
    (WorkflowStage.SCRIPT, Role.WRITER),
    (WorkflowStage.SCRIPT_REVIEW_L1, Role.CMO),
    (WorkflowStage.SCRIPT_REVIEW_L2, Role.CEO),
    (WorkflowStage.SHOOT, Role.CINE),
    (WorkflowStage.EDIT, Role.EDITOR),
    (WorkflowStage.DESIGN, Role.DESIGNER),
    (WorkflowStage.METADATA, Role.WRITER),
    (WorkflowStage.FINAL_REVIEW_L1, Role.CMO),
    (WorkflowStage.FINAL_REVIEW_L2, Role.CEO),
    (WorkflowStage.PUBLISH, Role.OPS),
    (WorkflowStage.COMPLETED, Role.OPS),
)

DEFAULT_WORKFLOWS: dict[Channel, tuple[WorkflowStep, ...]] = {
    Channel.LINKEDIN: _steps(
        (WorkflowStage.SCRIPT, Role.WRITER),
        (WorkflowStage.SCRIPT_REVIEW_L1, Role.CMO),
        (WorkflowStage.SCRIPT_REVIEW_L2, Role.CEO),
        (WorkflowStage.DESIGN, Role.DESIGNER),
        (WorkflowStage.FINAL_REVIEW_L1, Role.CMO),
        (WorkflowStage.FINAL_REVIEW_L2, Role.CEO),
        (WorkflowStage.PUBLISH, Role.OPS),
        (WorkflowStage.COMPLETED, Role.OPS),
    ),
    Channel.YOUTUBE: _VIDEO_SEQUENCE,
    Channel.INSTAGRAM: _VIDEO_SEQUENCE,
}


class WorkflowTable:
    """Ordered (stage, role) pipeline per channel.

    The last entry of each sequence is the terminal stage. A stage counts as
    a review stage when the role bound to it is an approver role.
    """

    def __init__(self, workflows: Mapping[Channel, Iterable[WorkflowStep]]) -> None:
        self._workflows: dict[Channel, tuple[WorkflowStep, ...]] = {}
        for channel, steps in workflows.items():
            sequence = tuple(steps)
            _validate_sequence(channel, sequence)
            self._workflows[Channel(channel)] = sequence

    @classmethod
    def default(cls) -> "WorkflowTable":
        return cls(DEFAULT_WORKFLOWS)

    def channels(self) -> list[Channel]:
        return list(self._workflows)

    def sequence(self, channel: Channel | str) -> list[WorkflowStep]:
        return list(self._sequence(channel))

    def index_of(self, channel: Channel | str, stage: WorkflowStage | str) -> int:
        stage = _coerce_stage(stage)
        for idx, step in enumerate(self._sequence(channel)):
            if step.stage == stage:
                return idx
        raise InvalidStageForChannelError(f"Stage {stage.value} is not part of the {Channel(channel).value} workflow")

    def contains(self, channel: Channel | str, stage: WorkflowStage | str) -> bool:
        try:
            self.index_of(channel, stage)
        except InvalidStageForChannelError:
            return False
        return True

    def step_for(self, channel: Channel | str, stage: WorkflowStage | str) -> WorkflowStep:
        return self._sequence(channel)[self.index_of(channel, stage)]

    def next(self, channel: Channel | str, stage: WorkflowStage | str) -> WorkflowStep | None:
        sequence = self._sequence(channel)
        idx = self.index_of(channel, stage)
        if idx + 1 >= len(sequence):
            return None
        return sequence[idx + 1]

    def first(self, channel: Channel | str) -> WorkflowStep:
        return self._sequence(channel)[0]

    def last(self, channel: Channel | str) -> WorkflowStep:
        return self._sequence(channel)[-1]

    def is_terminal(self, channel: Channel | str, stage: WorkflowStage | str) -> bool:
        return self.last(channel).stage == _coerce_stage(stage)

    def is_review(self, channel: Channel | str, stage: WorkflowStage | str) -> bool:
        return self.step_for(channel, stage).role in APPROVER_ROLES

    def earlier_stages(self, channel: Channel | str, stage: WorkflowStage | str) -> list[WorkflowStep]:
        return list(self._sequence(channel)[: self.index_of(channel, stage)])

    def to_dict(self) -> dict[str, list[dict[str, str]]]:
        return {
            channel.value: [{"stage": step.stage.value, "role": step.role.value} for step in steps]
            for channel, steps in self._workflows.items()
        }

    def _sequence(self, channel: Channel | str) -> tuple[WorkflowStep, ...]:
        try:
            return self._workflows[Channel(channel)]
        except (KeyError, ValueError) as exc:
            raise InvalidChannelError(f"Unknown channel: {channel}") from exc


def _coerce_stage(stage: WorkflowStage | str) -> WorkflowStage:
    try:
        return WorkflowStage(stage)
    except ValueError as exc:
        raise InvalidStageForChannelError(f"Unknown stage: {stage}") from exc


def _validate_sequence(channel: Channel | str, sequence: tuple[WorkflowStep, ...]) -> None:
    if not sequence:
        raise ValueError(f"Workflow for {channel} must have at least one step")
    seen: set[WorkflowStage] = set()
    for step in sequence:
        if step.stage in seen:
            raise ValueError(f"Workflow for {channel} repeats stage {step.stage.value}")
        if step.role in READ_ONLY_ROLES:
            raise ValueError(f"Role {step.role.value} cannot hold a workflow stage ({channel})")
        seen.add(step.stage)


def _load_payload(path: Path) -> Any:
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(path.read_text())
    if path.suffix.lower() == ".json":
        return json.loads(path.read_text())
    raise ValueError("Workflow table must be .yaml/.yml/.json")


def load_table(path: str | Path) -> WorkflowTable:
    """Build a table from a file mapping channel -> list of {stage, role}."""
    data = _load_payload(Path(path))
    if not isinstance(data, dict):
        raise ValueError("Workflow table must be an object keyed by channel")

    workflows: dict[Channel, list[WorkflowStep]] = {}
    for channel_name, steps in data.items():
        if not isinstance(steps, list):
            raise ValueError(f"Workflow for {channel_name} must be a list")
        workflows[Channel(str(channel_name).upper())] = [
            WorkflowStep(WorkflowStage(str(item["stage"]).upper()), Role(str(item["role"]).upper()))
            for item in steps
        ]
    return WorkflowTable(workflows)


def table_from_env() -> WorkflowTable:
    path = os.getenv("WORKFLOW_TABLE_PATH", "")
    return load_table(path) if path else WorkflowTable.default()
