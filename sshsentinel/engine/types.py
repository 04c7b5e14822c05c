from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .config_paths import DEFAULT_PROBE_TIMEOUT, DEFAULT_WORKERS, SSH_CONFIG
from .matchers import Matcher
from .values import ResolvedValue


# ---- Policy ---- #


@dataclass(frozen=True)
class ResourceSelector:
    kind: str               # "service", "file" or "sshd_config"
    locator: Optional[str]  # service name, file path or directive

    def __str__(self) -> str:
        return f"{self.kind}({self.locator})" if self.locator else self.kind


@dataclass(frozen=True)
class Assertion:
    resource: ResourceSelector
    matcher: Matcher
    attribute: Optional[str] = None

    def describe(self) -> str:
        subject = str(self.resource)
        if self.attribute:
            subject += f".{self.attribute}"
        return f"{subject} should {self.matcher.describe()}"


@dataclass(frozen=True)
class Control:
    id: str
    title: str
    description: str
    impact: float
    assertions: Tuple[Assertion, ...]


@dataclass(frozen=True)
class PolicyDocument:
    title: str
    controls: Tuple[Control, ...]

    def needs_config(self) -> bool:
        return any(
            a.resource.kind == "sshd_config"
            for c in self.controls
            for a in c.assertions
        )


# ---- Results ---- #


class ControlStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (ControlStatus.PASSED, ControlStatus.FAILED, ControlStatus.SKIPPED)


@dataclass(frozen=True)
class Verdict:
    control_id: str
    index: int
    passed: bool
    observed: ResolvedValue
    expected: str
    # Human readable subject, e.g. "sshd_config(PermitRootLogin)"
    subject: str = ""


@dataclass(frozen=True)
class SkipRecord:
    control_id: str
    index: int       # assertion that could not be evaluated (-1 if none started)
    reason: str


@dataclass(frozen=True)
class ControlResult:
    """What one worker hands back for one control."""
    control_id: str
    status: ControlStatus
    verdicts: Tuple[Verdict, ...] = ()
    skip: Optional[SkipRecord] = None


@dataclass(frozen=True)
class ControlReport:
    id: str
    title: str
    description: str
    impact: float
    status: ControlStatus
    verdicts: Tuple[Verdict, ...]
    skip: Optional[SkipRecord] = None


@dataclass(frozen=True)
class Report:
    title: str
    controls: Tuple[ControlReport, ...]
    score: int = 0

    def summary(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in (ControlStatus.PASSED, ControlStatus.FAILED, ControlStatus.SKIPPED)}
        for c in self.controls:
            counts[c.status.value] += 1
        return counts

    @property
    def passed(self) -> bool:
        return all(c.status is ControlStatus.PASSED for c in self.controls)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def get(self, control_id: str) -> Optional[ControlReport]:
        return next((c for c in self.controls if c.id == control_id), None)


@dataclass
class RunSettings:
    config_path: str = SSH_CONFIG
    workers: int = DEFAULT_WORKERS
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
