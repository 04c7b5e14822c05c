from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Dict, List, Optional, Tuple

from .errors import ConfigSourceError, ResolutionError
from .files import ConfigModel, SSHD_GRAMMAR, parse_config
from .matchers import evaluate
from .resources import ConfigResource, FileResource, ResourceProbe, ServiceResource
from .scoring import aggregate
from .target import Target
from .types import (
    Control,
    ControlResult,
    ControlStatus,
    PolicyDocument,
    Report,
    ResourceSelector,
    RunSettings,
    SkipRecord,
    Verdict,
)
from .values import ResolvedValue

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Probe resolution with a timeout
# ---------------------------------------------------------------------------


class ProbeResolver:
    """
    Builds probes for one control and resolves their attributes.

    Each resolution runs on its own daemon thread and is abandoned after
    ``timeout`` seconds, turning into a ResolutionError. An abandoned
    thread never blocks interpreter exit and never holds up later resolutions.
    """

    def __init__(self, target: Target, config: Optional[ConfigModel], timeout: float):
        self.target = target
        self.config = config
        self.timeout = timeout

    def probe_for(self, selector: ResourceSelector) -> ResourceProbe:
        if selector.kind == ServiceResource.kind:
            return ServiceResource(self.target, selector.locator, self.timeout)
        if selector.kind == FileResource.kind:
            return FileResource(self.target, selector.locator)
        if selector.kind == ConfigResource.kind:
            if self.config is None:
                raise ResolutionError(str(selector), "no configuration model loaded")
            return ConfigResource(self.config, selector.locator)
        raise ResolutionError(str(selector), f"unknown resource kind '{selector.kind}'")

    def resolve(self, probe: ResourceProbe, attribute: Optional[str]) -> ResolvedValue:
        outcome = {}

        def work():
            try:
                outcome["value"] = probe.resolve(attribute)
            except Exception as e:  # re-raised on the calling thread
                outcome["error"] = e

        worker = threading.Thread(target=work, name=f"resolve {probe.describe()}", daemon=True)
        worker.start()
        worker.join(self.timeout)

        if worker.is_alive():
            raise ResolutionError(probe.describe(), f"timed out after {self.timeout:g}s")
        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]


# ---------------------------------------------------------------------------
# One control
# ---------------------------------------------------------------------------


def _skipped(control: Control, index: int, reason: str, verdicts: List[Verdict]) -> ControlResult:
    logger.info("control %s skipped at assertion %d: %s", control.id, index, reason)
    return ControlResult(
        control_id=control.id,
        status=ControlStatus.SKIPPED,
        verdicts=tuple(verdicts),
        skip=SkipRecord(control_id=control.id, index=index, reason=reason),
    )


def run_control(
    control: Control,
    resolver: ProbeResolver,
    cancel: Optional[threading.Event] = None,
) -> ControlResult:
    """
    Evaluate one control: Pending -> Running -> Passed | Failed | Skipped.

    Assertions run in declaration order. A resolution failure skips the
    rest of the control; a failing assertion does not.
    """
    status = ControlStatus.RUNNING
    logger.debug("control %s: %s", control.id, status.value)

    probes: Dict[ResourceSelector, ResourceProbe] = {}
    verdicts: List[Verdict] = []

    for index, assertion in enumerate(control.assertions):
        if cancel is not None and cancel.is_set():
            return _skipped(control, index, CANCELLED, verdicts)

        try:
            probe = probes.get(assertion.resource)
            if probe is None:
                probe = probes[assertion.resource] = resolver.probe_for(assertion.resource)
            observed = resolver.resolve(probe, assertion.attribute)
        except ResolutionError as e:
            return _skipped(control, index, str(e), verdicts)

        if probe.resolution_failed:
            return _skipped(control, index, probe.failure_reason or "resource could not be resolved", verdicts)

        passed = evaluate(assertion.matcher, observed)
        verdicts.append(Verdict(
            control_id=control.id,
            index=index,
            passed=passed,
            observed=observed,
            expected=assertion.matcher.describe(),
            subject=assertion.describe(),
        ))
        logger.debug("control %s assertion %d: %s (observed %s)",
                     control.id, index, "pass" if passed else "fail", observed)

    status = ControlStatus.PASSED if all(v.passed for v in verdicts) else ControlStatus.FAILED
    return ControlResult(control_id=control.id, status=status, verdicts=tuple(verdicts))


# ---------------------------------------------------------------------------
# Whole policy
# ---------------------------------------------------------------------------


def load_config_model(target: Target, path: str) -> ConfigModel:
    """Read and parse the configuration file once for this run."""
    try:
        raw = target.read_bytes(path)
    except OSError as e:
        raise ConfigSourceError(path, e.strerror or str(e)) from e
    model = parse_config(raw, SSHD_GRAMMAR)
    logger.info("parsed %s: %d directives, %d match blocks",
                path, len(model.directives), len(model.match_blocks))
    return model


class Evaluation:
    """
    One evaluation pass of a policy against a target.

    Controls run concurrently on a bounded pool; each worker returns its own
    ControlResult and the report is assembled after all of them finished.
    """

    def __init__(
        self,
        policy: PolicyDocument,
        target: Target,
        settings: Optional[RunSettings] = None,
        config: Optional[ConfigModel] = None,
    ):
        self.policy = policy
        self.target = target
        self.settings = settings or RunSettings()
        self.config = config

    def run(self, cancel: Optional[threading.Event] = None) -> Report:
        cancel = cancel or threading.Event()

        # A model given at construction is used as is; otherwise the file is
        # read fresh on every run.
        config = self.config
        if config is None and self.policy.needs_config():
            config = load_config_model(self.target, self.settings.config_path)

        workers = max(1, self.settings.workers)
        results: Dict[str, ControlResult] = {}
        resolver = ProbeResolver(self.target, config, self.settings.probe_timeout)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="control") as pool:
            futures: List[Tuple[Control, Future]] = [
                (control, pool.submit(run_control, control, resolver, cancel))
                for control in self.policy.controls
            ]
            for control, future in futures:
                results[control.id] = self._collect(control, future, cancel)

        return aggregate(self.policy, results)

    @staticmethod
    def _collect(control: Control, future: Future, cancel: threading.Event) -> ControlResult:
        while True:
            if cancel.is_set() and future.cancel():
                return _skipped(control, -1, CANCELLED, [])
            try:
                return future.result(timeout=0.1)
            except FutureTimeout:
                continue


def evaluate_policy(
    policy: PolicyDocument,
    target: Target,
    settings: Optional[RunSettings] = None,
    cancel: Optional[threading.Event] = None,
) -> Report:
    return Evaluation(policy, target, settings).run(cancel)

