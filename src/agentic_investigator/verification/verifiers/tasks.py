"""Task completion, adversarial pass, curiosity and perspective coverage."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agentic_investigator.verification.casefiles import list_files, read_json
from agentic_investigator.verification.models import GapType, VerifierOutcome
from agentic_investigator.verification.verifiers.base import make_gap, outcome

_PERSPECTIVE_ALIASES = {
    "blindspots": "blind_spots",
    "blind_spot": "blind_spots",
    "counter_factual": "counterfactual",
    "counterfactuals": "counterfactual",
}


def normalize_perspective(value: Any) -> str:
    key = re.sub(r"[^a-z0-9]+", "_", str(value or "").strip().lower()).strip("_")
    return _PERSPECTIVE_ALIASES.get(key, key)


@dataclass(slots=True)
class _Task:
    task_id: str
    status: str
    payload: dict[str, Any]


class TasksVerifier:
    """Checks ``tasks/*.json`` against completion requirements."""

    def __init__(
        self,
        *,
        required_perspectives: tuple[str, ...] = (),
        min_curiosity_tasks: int = 2,
    ) -> None:
        self.required_perspectives = required_perspectives
        self.min_curiosity_tasks = min_curiosity_tasks

    def verify(self, case_dir: Path, options: Mapping[str, Any]) -> VerifierOutcome:  # noqa: C901
        tasks_dir = case_dir / "tasks"
        gaps: list[dict[str, Any]] = []
        if not tasks_dir.is_dir():
            gaps.append(
                make_gap(
                    GapType.TASK_INCOMPLETE,
                    "tasks/ directory not found",
                    object_={"dir": "tasks/"},
                    actions=("generate_tasks",),
                ),
            )

        tasks: list[_Task] = []
        for path in list_files(tasks_dir, (".json",)):
            parsed = read_json(path)
            if not parsed.ok or not isinstance(parsed.value, dict):
                problem = parsed.message or parsed.error or "expected a JSON object"
                gaps.append(
                    make_gap(
                        GapType.TASK_INCOMPLETE,
                        f"Failed to parse tasks/{path.name}: {problem}",
                        object_={"file": f"tasks/{path.name}"},
                        actions=("fix_task_json",),
                    ),
                )
                continue
            payload = parsed.value
            tasks.append(
                _Task(
                    task_id=str(payload.get("id") or path.stem),
                    status=str(payload.get("status") or "").lower(),
                    payload=payload,
                ),
            )

        for task in tasks:
            priority = str(task.payload.get("priority") or "").upper()
            if priority == "HIGH" and task.status != "completed":
                status = task.status or "unknown"
                gaps.append(
                    make_gap(
                        GapType.TASK_INCOMPLETE,
                        f"HIGH priority task {task.task_id} not completed (status={status})",
                        object_={"task_id": task.task_id, "status": status, "priority": "HIGH"},
                        actions=("execute_task",),
                    ),
                )
            if task.status == "completed":
                findings_rel = str(
                    task.payload.get("findings_file")
                    or task.payload.get("output_file")
                    or f"findings/{task.task_id}-findings.md",
                )
                if not (case_dir / findings_rel).exists():
                    gaps.append(
                        make_gap(
                            GapType.TASK_INCOMPLETE,
                            f"Task {task.task_id} marked completed but findings file missing: "
                            f"{findings_rel}",
                            object_={"task_id": task.task_id, "findings_file": findings_rel},
                            actions=("write_findings", "revert_task_status"),
                        ),
                    )

        gaps.extend(self._adversarial_gaps(tasks))

        curiosity = [
            task
            for task in tasks
            if task.payload.get("type") == "curiosity"
            or normalize_perspective(task.payload.get("perspective")) == "curiosity"
        ]
        required = int(options.get("min_curiosity_tasks", self.min_curiosity_tasks))
        if len(curiosity) < required:
            gaps.append(
                make_gap(
                    GapType.CURIOSITY_DEFICIT,
                    f"Only {len(curiosity)} curiosity tasks; require >={required} per cycle",
                    object_={"current": len(curiosity), "required": required},
                    actions=("generate_curiosity_tasks",),
                ),
            )

        covered = {normalize_perspective(task.payload.get("perspective")) for task in tasks}
        for perspective in options.get("required_perspectives", self.required_perspectives):
            key = normalize_perspective(perspective)
            if key and key not in covered:
                gaps.append(
                    make_gap(
                        GapType.PERSPECTIVE_MISSING,
                        f"No task addresses '{perspective}' perspective",
                        object_={"perspective": perspective},
                        actions=("create_perspective_task",),
                    ),
                )
        return outcome(gaps)

    def _adversarial_gaps(self, tasks: list[_Task]) -> list[dict[str, Any]]:
        adversarial = [task for task in tasks if task.task_id.startswith("A")]
        if not adversarial:
            return [
                make_gap(
                    GapType.ADVERSARIAL_INCOMPLETE,
                    "No adversarial tasks (A###.json) found",
                    actions=("run_adversarial_pass",),
                ),
            ]
        incomplete = [task for task in adversarial if task.status != "completed"]
        if not incomplete:
            return []
        listing = ", ".join(f"{task.task_id}({task.status or 'unknown'})" for task in incomplete)
        return [
            make_gap(
                GapType.ADVERSARIAL_INCOMPLETE,
                f"{len(incomplete)} adversarial tasks not completed: {listing}",
                object_={"tasks": [task.task_id for task in incomplete]},
                actions=("complete_adversarial_tasks",),
            ),
        ]
