from __future__ import annotations

from typing import List, Mapping

from .types import ControlReport, ControlResult, ControlStatus, PolicyDocument, Report, SkipRecord


def compute_score(controls: List[ControlReport]) -> int:
    """Share of the total impact held by passed controls, as a percentage."""
    total = sum(c.impact for c in controls)
    if total == 0:
        return 0

    done = sum(c.impact for c in controls if c.status is ControlStatus.PASSED)
    return round(100 * done / total)


def aggregate(policy: PolicyDocument, results: Mapping[str, ControlResult]) -> Report:
    """
    Merge per-control results into a report in policy declaration order.

    Impacts are copied unchanged. A control with no result (never ran, or
    was cancelled before it started) is reported as skipped so that every
    control ends in a terminal status.
    """
    reports: List[ControlReport] = []

    for control in policy.controls:
        result = results.get(control.id)
        if result is None or not result.status.terminal:
            result = ControlResult(
                control_id=control.id,
                status=ControlStatus.SKIPPED,
                verdicts=result.verdicts if result else (),
                skip=SkipRecord(control_id=control.id, index=-1, reason="not evaluated"),
            )

        reports.append(ControlReport(
            id=control.id,
            title=control.title,
            description=control.description,
            impact=control.impact,
            status=result.status,
            verdicts=result.verdicts,
            skip=result.skip,
        ))

    return Report(title=policy.title, controls=tuple(reports), score=compute_score(reports))
