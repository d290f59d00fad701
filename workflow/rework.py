from __future__ import annotations

from .table import WorkflowStep, WorkflowTable
from .types import Channel, ContentType, WorkflowStage

# (channel, review stage) -> stages a reviewer may send the project back to.
# Script reviews always go back to the writer; final reviews never do.
_SCRIPT_REWORK = (WorkflowStage.SCRIPT,)
_CREATIVE_FINAL_REWORK = (WorkflowStage.DESIGN,)
_VIDEO_FINAL_REWORK = (WorkflowStage.DESIGN, WorkflowStage.EDIT, WorkflowStage.SHOOT)

REWORK_RULES: dict[tuple[Channel, WorkflowStage], tuple[WorkflowStage, ...]] = {
    (Channel.LINKEDIN, WorkflowStage.SCRIPT_REVIEW_L1): _SCRIPT_REWORK,
    (Channel.LINKEDIN, WorkflowStage.SCRIPT_REVIEW_L2): _SCRIPT_REWORK,
    (Channel.LINKEDIN, WorkflowStage.FINAL_REVIEW_L1): _CREATIVE_FINAL_REWORK,
    (Channel.LINKEDIN, WorkflowStage.FINAL_REVIEW_L2): _CREATIVE_FINAL_REWORK,
    (Channel.YOUTUBE, WorkflowStage.SCRIPT_REVIEW_L1): _SCRIPT_REWORK,
    (Channel.YOUTUBE, WorkflowStage.SCRIPT_REVIEW_L2): _SCRIPT_REWORK,
    (Channel.YOUTUBE, WorkflowStage.FINAL_REVIEW_L1): _VIDEO_FINAL_REWORK,
    (Channel.YOUTUBE, WorkflowStage.FINAL_REVIEW_L2): _VIDEO_FINAL_REWORK,
    (Channel.INSTAGRAM, WorkflowStage.SCRIPT_REVIEW_L1): _SCRIPT_REWORK,
    (Channel.INSTAGRAM, WorkflowStage.SCRIPT_REVIEW_L2): _SCRIPT_REWORK,
    (Channel.INSTAGRAM, WorkflowStage.FINAL_REVIEW_L1): _VIDEO_FINAL_REWORK,
    (Channel.INSTAGRAM, WorkflowStage.FINAL_REVIEW_L2): _VIDEO_FINAL_REWORK,
}

# Stages that only exist for footage; dropped for creative-only content.
VIDEO_ONLY_STAGES = frozenset({WorkflowStage.SHOOT, WorkflowStage.EDIT})

REWORK_LABELS: dict[WorkflowStage, str] = {
    WorkflowStage.SCRIPT: "Writer (Fix Script)",
    WorkflowStage.DESIGN: "Designer (Fix Visuals)",
    WorkflowStage.EDIT: "Editor (Fix Video)",
    WorkflowStage.SHOOT: "Cinematographer (Reshoot)",
}


class ReworkRules:
    def __init__(
        self,
        table: WorkflowTable,
        rules: dict[tuple[Channel, WorkflowStage], tuple[WorkflowStage, ...]] | None = None,
    ) -> None:
        self._table = table
        self._rules = REWORK_RULES if rules is None else rules

    def targets(
        self,
        channel: Channel,
        stage: WorkflowStage,
        content_type: ContentType = ContentType.VIDEO,
    ) -> list[WorkflowStep]:
        """Legal rework targets for a project sitting at ``stage``.

        Without a rule entry every earlier stage of the sequence qualifies.
        Targets missing from the channel's sequence are skipped, so a custom
        table never yields a stage the engine could not assign.
        """
        allowed = self._rules.get((Channel(channel), WorkflowStage(stage)))
        if allowed is None:
            steps = self._table.earlier_stages(channel, stage)
        else:
            steps = [self._table.step_for(channel, target) for target in allowed if self._table.contains(channel, target)]
        if content_type == ContentType.CREATIVE_ONLY:
            steps = [step for step in steps if step.stage not in VIDEO_ONLY_STAGES]
        return steps

    def allows(
        self,
        channel: Channel,
        stage: WorkflowStage,
        target: WorkflowStage,
        content_type: ContentType = ContentType.VIDEO,
    ) -> bool:
        return any(step.stage == target for step in self.targets(channel, stage, content_type))
