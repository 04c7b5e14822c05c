import os
import subprocess
import sys
import textwrap
import threading
import time
from pathlib import Path

import pytest

from sshsentinel.engine.errors import ConfigSourceError, ParseError
from sshsentinel.engine.files import parse_config
from sshsentinel.engine.loader import policy_from_dict
from sshsentinel.engine.runner import Evaluation, ProbeResolver, run_control
from sshsentinel.engine.types import ControlStatus, RunSettings
from sshsentinel.engine.values import Absent, StringValue


def _policy(*controls):
    return policy_from_dict({"title": "test", "controls": list(controls)})


def _config_control(cid, impact, *checks):
    return {
        "id": cid,
        "impact": impact,
        "describe": [{
            "resource": "sshd_config",
            "assertions": [{"its": d, "should": {"eq": v}} for d, v in checks],
        }],
    }


ROOT = Path(__file__).resolve().parents[1]


def _resolver(target, config_text, timeout=2.0):
    model = parse_config(config_text) if config_text is not None else None
    return ProbeResolver(target, model, timeout)


def test_permit_root_login_scenario(target):
    control = _policy(_config_control("auth", 0.9, ("PermitRootLogin", "no"))).controls[0]
    result = run_control(control, _resolver(target, "PermitRootLogin no\nProtocol 2\n"))
    assert result.status is ControlStatus.PASSED
    assert result.verdicts[0].observed == StringValue("no")
    assert result.verdicts[0].passed


def test_missing_banner_fails_not_nil(target):
    control = _policy({
        "id": "banner",
        "impact": 0.9,
        "describe": [{"resource": "sshd_config", "assertions": [{"its": "Banner", "should_not": {"be_nil": True}}]}],
    }).controls[0]
    result = run_control(control, _resolver(target, "Protocol 2\n"))
    assert result.status is ControlStatus.FAILED
    assert result.verdicts[0].observed is Absent
    assert result.verdicts[0].expected == "not be nil"


def test_failure_in_middle_does_not_short_circuit(target):
    control = _policy(_config_control(
        "hardening", 0.6,
        ("ClientAliveInterval", "900"),
        ("ClientAliveCountMax", "2"),
        ("X11Forwarding", "no"),
    )).controls[0]
    text = "ClientAliveInterval 900\nClientAliveCountMax 5\nX11Forwarding no\n"
    result = run_control(control, _resolver(target, text))
    assert result.status is ControlStatus.FAILED
    assert [v.passed for v in result.verdicts] == [True, False, True]
    assert [v.index for v in result.verdicts] == [0, 1, 2]
    assert result.verdicts[1].observed == StringValue("5")
    assert result.skip is None


def test_missing_service_skips_with_single_record(target):
    control = _policy({
        "id": "svc",
        "impact": 1.0,
        "describe": [{"resource": "service", "name": "sshd", "assertions": [
            {"should": {"be": "installed"}},
            {"should": {"be": "enabled"}},
            {"should": {"be": "running"}},
        ]}],
    }).controls[0]
    result = run_control(control, _resolver(target, None))
    assert result.status is ControlStatus.SKIPPED
    assert result.verdicts == ()
    assert result.skip.index == 0
    assert "sshd" in result.skip.reason
    assert target.calls == [("service", "sshd")]


def test_resolution_error_stops_remaining_assertions(target):
    target.add_file("/etc/ssh/sshd_config", b"", mode=0o600)
    target.read_errors["/etc/ssh/sshd_config"] = "Permission denied"
    control = _policy({
        "id": "perm",
        "impact": 0.5,
        "describe": [{"resource": "file", "name": "/etc/ssh/sshd_config", "assertions": [
            {"its": "owner", "should": {"eq": "root"}},
            {"its": "content", "should_not": {"be_empty": True}},
            {"its": "group", "should": {"eq": "root"}},
        ]}],
    }).controls[0]
    result = run_control(control, _resolver(target, None))
    assert result.status is ControlStatus.SKIPPED
    assert len(result.verdicts) == 1
    assert result.skip.index == 1
    assert "Permission denied" in result.skip.reason


def test_nonexistent_file_fails_rather_than_skips(target):
    control = _policy({
        "id": "issue",
        "impact": 0.9,
        "describe": [{"resource": "file", "name": "/etc/issue.net", "assertions": [
            {"should": {"be": "file"}},
            {"its": "owner", "should": {"eq": "root"}},
            {"its": "content", "should_not": {"be_empty": True}},
        ]}],
    }).controls[0]
    result = run_control(control, _resolver(target, None))
    assert result.status is ControlStatus.FAILED
    assert [v.observed for v in result.verdicts][1:] == [Absent, Absent]
    assert not any(v.passed for v in result.verdicts)


def test_slow_resolution_times_out(target):
    target.add_service("slowd")
    target.slow["slowd"] = 0.5
    control = _policy({
        "id": "slow",
        "impact": 0.1,
        "describe": [{"resource": "service", "name": "slowd", "assertions": [{"should": {"be": "running"}}]}],
    }).controls[0]
    result = run_control(control, _resolver(target, None, timeout=0.05))
    assert result.status is ControlStatus.SKIPPED
    assert "timed out" in result.skip.reason


def test_cancelled_control_is_skipped(target):
    control = _policy(_config_control("c", 0.5, ("Protocol", "2"))).controls[0]
    cancel = threading.Event()
    cancel.set()
    result = run_control(control, _resolver(target, "Protocol 2\n"), cancel)
    assert result.status is ControlStatus.SKIPPED
    assert result.skip.reason == "cancelled"


def test_cancel_during_running_assertion_keeps_earlier_verdicts(target):
    target.add_service("slowd")
    target.slow["slowd"] = 0.3
    control = _policy({
        "id": "svc",
        "impact": 1.0,
        "describe": [{"resource": "service", "name": "slowd", "assertions": [
            {"should": {"be": "running"}},
            {"should": {"be": "enabled"}},
        ]}],
    }).controls[0]
    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    try:
        result = run_control(control, _resolver(target, None), cancel)
    finally:
        timer.cancel()

    assert result.status is ControlStatus.SKIPPED
    assert result.skip.reason == "cancelled"
    assert result.skip.index == 1
    assert len(result.verdicts) == 1
    assert result.verdicts[0].passed


STUCK_STAT_SCRIPT = """
import time

from sshsentinel.engine.loader import policy_from_dict
from sshsentinel.engine.runner import Evaluation
from sshsentinel.engine.target import FileStat
from sshsentinel.engine.types import RunSettings


class StuckTarget:
    def service_status(self, name, timeout):
        raise AssertionError("unused")

    def stat(self, path):
        time.sleep(8)
        return FileStat(path=path, exists=False)

    def read_bytes(self, path):
        raise FileNotFoundError(path)


policy = policy_from_dict({"controls": [{
    "id": "stuck",
    "impact": 0.5,
    "describe": [{"resource": "file", "name": "/etc/issue.net", "assertions": [{"should": {"be": "file"}}]}],
}]})
report = Evaluation(policy, StuckTarget(), RunSettings(workers=1, probe_timeout=0.2)).run()
print(report.controls[0].status.value)
"""


def test_timed_out_resolution_does_not_block_exit():
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), env.get("PYTHONPATH")]))

    started = time.monotonic()
    proc = subprocess.run(
        [sys.executable, "-c", textwrap.dedent(STUCK_STAT_SCRIPT)],
        cwd=ROOT, env=env, capture_output=True, text=True, timeout=30,
    )
    elapsed = time.monotonic() - started

    assert proc.returncode == 0, proc.stderr
    assert proc.stdout.strip() == "skipped"
    assert elapsed < 4.0


def test_timed_out_resolution_does_not_starve_later_ones(target):
    target.add_service("slowd")
    target.add_service("sshd")
    target.slow["slowd"] = 1.0
    policy = _policy(*[
        {
            "id": f"svc-{i}",
            "impact": 0.5,
            "describe": [{"resource": "service", "name": name, "assertions": [{"should": {"be": "running"}}]}],
        }
        for i, name in enumerate(["slowd", "slowd", "slowd", "sshd"])
    ])
    report = Evaluation(policy, target, RunSettings(workers=1, probe_timeout=0.05)).run()
    assert [c.status for c in report.controls] == [ControlStatus.SKIPPED] * 3 + [ControlStatus.PASSED]


class TestEvaluation:
    def _full_policy(self):
        return _policy(
            {
                "id": "svc", "impact": 1.0,
                "describe": [{"resource": "service", "name": "sshd", "assertions": [
                    {"should": {"be": "installed"}}, {"should": {"be": "running"}},
                ]}],
            },
            _config_control("auth", 0.9, ("PermitRootLogin", "no"), ("PasswordAuthentication", "no")),
            {
                "id": "perm", "impact": 0.5,
                "describe": [{"resource": "file", "name": "/etc/ssh/sshd_config", "assertions": [
                    {"its": "owner", "should": {"eq": "root"}},
                    {"should_not": {"be": "writable_by_group"}},
                    {"should_not": {"be": "writable_by_others"}},
                ]}],
            },
            _config_control("proto", 0.7, ("Protocol", "2")),
        )

    def test_full_run(self, target):
        target.add_service("sshd")
        target.add_file("/etc/ssh/sshd_config", b"PermitRootLogin no\nPasswordAuthentication yes\n", mode=0o644)
        report = Evaluation(self._full_policy(), target, RunSettings(workers=3)).run()

        assert [c.id for c in report.controls] == ["svc", "auth", "perm", "proto"]
        status = {c.id: c.status for c in report.controls}
        assert status == {
            "svc": ControlStatus.PASSED,
            "auth": ControlStatus.FAILED,
            "perm": ControlStatus.PASSED,
            "proto": ControlStatus.FAILED,
        }
        assert report.exit_code == 1

    def test_config_read_once(self, target):
        target.add_service("sshd")
        target.add_file("/etc/ssh/sshd_config", b"Protocol 2\n")
        Evaluation(self._full_policy(), target).run()
        assert target.calls.count(("read", "/etc/ssh/sshd_config")) == 1

    def test_missing_config_source_is_fatal(self, target):
        with pytest.raises(ConfigSourceError):
            Evaluation(self._full_policy(), target, RunSettings(config_path="/missing")).run()

    def test_undecodable_config_is_fatal(self, target):
        target.add_file("/etc/ssh/sshd_config", b"\xff\xfe\x00")
        with pytest.raises(ParseError):
            Evaluation(self._full_policy(), target).run()

    def test_cancel_before_start_skips_everything(self, target):
        target.add_service("sshd")
        target.add_file("/etc/ssh/sshd_config", b"Protocol 2\n")
        cancel = threading.Event()
        cancel.set()
        report = Evaluation(self._full_policy(), target).run(cancel)
        assert all(c.status is ControlStatus.SKIPPED for c in report.controls)
        assert all(c.skip.reason == "cancelled" for c in report.controls)

    def test_order_stable_across_runs(self, target):
        target.add_service("sshd")
        target.add_file("/etc/ssh/sshd_config", b"Protocol 2\n")
        policy = self._full_policy()
        first = Evaluation(policy, target, RunSettings(workers=4)).run()
        second = Evaluation(policy, target, RunSettings(workers=1)).run()
        assert [c.id for c in first.controls] == [c.id for c in second.controls]
        assert [c.status for c in first.controls] == [c.status for c in second.controls]

    def test_slow_first_control_keeps_declaration_order(self, target):
        target.add_service("sshd")
        target.slow["sshd"] = 0.3
        target.add_file("/etc/ssh/sshd_config", b"PermitRootLogin no\nPasswordAuthentication no\n", mode=0o600)
        report = Evaluation(self._full_policy(), target, RunSettings(workers=3)).run()

        assert [c.id for c in report.controls] == ["svc", "auth", "perm", "proto"]
        assert [c.status for c in report.controls] == [
            ControlStatus.PASSED,
            ControlStatus.PASSED,
            ControlStatus.PASSED,
            ControlStatus.FAILED,
        ]

    def test_config_reread_on_every_run(self, target):
        target.add_file("/etc/ssh/sshd_config", b"PermitRootLogin yes\n")
        evaluation = Evaluation(_policy(_config_control("auth", 0.9, ("PermitRootLogin", "no"))), target)

        first = evaluation.run()
        target.contents["/etc/ssh/sshd_config"] = b"PermitRootLogin no\n"
        second = evaluation.run()

        assert first.controls[0].status is ControlStatus.FAILED
        assert second.controls[0].status is ControlStatus.PASSED
        assert target.calls.count(("read", "/etc/ssh/sshd_config")) == 2
