from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional, Union

from .errors import ConfigSourceError, ParseError, PolicyError
from .loader import load_policy
from .runner import Evaluation
from .target import LocalTarget, Target
from .types import ControlReport, ControlStatus, PolicyDocument, Report, RunSettings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NONCOMPLIANT = 1
EXIT_ERROR = 2
EXIT_CANCELLED = 130

STATUS_LABEL = {
    ControlStatus.PASSED: "PASS",
    ControlStatus.FAILED: "FAIL",
    ControlStatus.SKIPPED: "SKIP",
}


def score_bar(score: int, length: int = 30) -> str:
    filled = int(score / 100 * length)
    return "[" + "█" * filled + "░" * (length - filled) + "]"


def print_control(c: ControlReport) -> None:
    print(f"\n[{STATUS_LABEL[c.status]}] {c.id} (impact {c.impact:.1f}) {c.title}")

    for v in c.verdicts:
        mark = "ok " if v.passed else "BAD"
        print(f"  {mark} {v.subject}")
        if not v.passed:
            print(f"      Expected: {v.expected}")
            print(f"      Current:  {v.observed}")

    if c.skip is not None:
        print(f"  skipped: {c.skip.reason}")


def print_report(report: Report) -> None:
    if report.title:
        print(f"\n=== {report.title} ===")

    print(f"\nCompliance Score: {report.score}%")
    print(score_bar(report.score))

    for c in report.controls:
        print_control(c)

    counts = report.summary()
    print(f"\n{counts['passed']} passed, {counts['failed']} failed, {counts['skipped']} skipped")


def print_policy(policy: PolicyDocument) -> None:
    for c in policy.controls:
        print(f"{c.id}  impact={c.impact:.1f}  {c.title}")
        for a in c.assertions:
            print(f"    {a.describe()}")


def run_scanner(
    policy_path: Union[str, Path],
    settings: RunSettings,
    target: Optional[Target] = None,
    cancel: Optional[threading.Event] = None,
) -> int:
    """Load, evaluate and print one policy. Returns the process exit code."""
    cancel = cancel or threading.Event()

    try:
        policy = load_policy(policy_path)
    except PolicyError as e:
        logger.error("%s", e)
        return EXIT_ERROR

    evaluation = Evaluation(policy, target or LocalTarget(), settings)
    try:
        report = _run_interruptible(evaluation, cancel)
    except (ConfigSourceError, ParseError) as e:
        logger.error("%s", e)
        return EXIT_ERROR

    print_report(report)

    if cancel.is_set():
        return EXIT_CANCELLED
    return EXIT_OK if report.passed else EXIT_NONCOMPLIANT


def _run_interruptible(evaluation: Evaluation, cancel: threading.Event) -> Report:
    """
    Run the evaluation on a helper thread so Ctrl-C cancels it cleanly.

    On interrupt the cancel event is set and the run still completes, with
    unfinished controls reported as skipped.
    """
    outcome = {}

    def work():
        try:
            outcome["report"] = evaluation.run(cancel)
        except Exception as e:  # re-raised on the calling thread
            outcome["error"] = e

    worker = threading.Thread(target=work, name="evaluation", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(timeout=0.2)
        except KeyboardInterrupt:
            logger.warning("interrupted, cancelling remaining controls")
            cancel.set()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["report"]
