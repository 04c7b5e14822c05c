from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import MatcherError, PolicyError
from .matchers import BooleanProperty, Equals, Matcher, Negated, build_matcher, property_name
from .resources import RESOURCE_KINDS
from .types import Assertion, Control, PolicyDocument, ResourceSelector


def load_policy(path: Union[str, Path]) -> PolicyDocument:
    """Load a policy document from a YAML file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PolicyError(f"cannot read policy file '{path}': {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PolicyError(f"cannot parse policy file '{path}': {e}") from e

    return policy_from_dict(data, source=str(path))


def policy_from_dict(data: Any, source: str = "<policy>") -> PolicyDocument:
    """
    Build an immutable PolicyDocument from already decoded data.

    Schema:

        title: Secure SSH Server Baseline
        controls:
          - id: ssh-auth-2.0
            impact: 0.9
            title: ...
            desc: ...
            describe:
              - resource: sshd_config
                assertions:
                  - its: PermitRootLogin
                    should: {eq: "no"}
              - resource: file
                name: /etc/ssh/sshd_config
                assertions:
                  - should_not: {be: writable_by_group}
    """
    if not isinstance(data, dict):
        raise PolicyError(f"{source}: top level must be a mapping")

    raw_controls = data.get("controls")
    if not isinstance(raw_controls, list):
        raise PolicyError(f"{source}: 'controls' must be a list")

    controls: List[Control] = []
    seen = set()

    for i, c in enumerate(raw_controls):
        control = _control(c, f"{source}: controls[{i}]")
        if control.id in seen:
            raise PolicyError(f"{source}: duplicate control id '{control.id}'")
        seen.add(control.id)
        controls.append(control)

    return PolicyDocument(title=str(data.get("title") or ""), controls=tuple(controls))


def _control(c: Any, where: str) -> Control:
    if not isinstance(c, dict):
        raise PolicyError(f"{where}: control must be a mapping")

    control_id = c.get("id")
    if not isinstance(control_id, str) or not control_id:
        raise PolicyError(f"{where}: missing control id")
    where = f"{where} ({control_id})"

    impact = c.get("impact", 0.5)
    if isinstance(impact, bool) or not isinstance(impact, (int, float)):
        raise PolicyError(f"{where}: impact must be a number, got {impact!r}")
    impact = float(impact)
    if not 0.0 <= impact <= 1.0:
        raise PolicyError(f"{where}: impact {impact} outside [0.0, 1.0]")

    groups = c.get("describe")
    if not isinstance(groups, list) or not groups:
        raise PolicyError(f"{where}: 'describe' must be a non-empty list")

    assertions: List[Assertion] = []
    for j, group in enumerate(groups):
        assertions.extend(_describe_block(group, f"{where}: describe[{j}]"))

    return Control(
        id=control_id,
        title=str(c.get("title") or ""),
        description=str(c.get("desc") or c.get("description") or ""),
        impact=impact,
        assertions=tuple(assertions),
    )


def _describe_block(group: Any, where: str) -> List[Assertion]:
    if not isinstance(group, dict):
        raise PolicyError(f"{where}: must be a mapping")

    kind = group.get("resource")
    probe_cls = RESOURCE_KINDS.get(kind)
    if probe_cls is None:
        raise PolicyError(f"{where}: unknown resource '{kind}' (expected one of {', '.join(RESOURCE_KINDS)})")

    name: Optional[str] = group.get("name")
    if kind != "sshd_config" and not name:
        raise PolicyError(f"{where}: resource '{kind}' needs a name")

    items = group.get("assertions")
    if not isinstance(items, list) or not items:
        raise PolicyError(f"{where}: 'assertions' must be a non-empty list")

    return [_assertion(kind, name, item, probe_cls, f"{where}: assertions[{k}]") for k, item in enumerate(items)]


def _assertion(kind: str, name: Optional[str], item: Any, probe_cls, where: str) -> Assertion:
    if not isinstance(item, dict):
        raise PolicyError(f"{where}: must be a mapping")

    if ("should" in item) == ("should_not" in item):
        raise PolicyError(f"{where}: needs exactly one of 'should' / 'should_not'")

    negate = "should_not" in item
    form: Dict[str, Any] = item["should_not"] if negate else item["should"]

    try:
        matcher = build_matcher(form)
    except MatcherError as e:
        raise MatcherError(f"{where}: {e}") from e
    if negate:
        matcher = Negated(matcher)

    its = item.get("its")
    if its is not None and not isinstance(its, str):
        raise PolicyError(f"{where}: 'its' must be a string")

    prop = property_name(matcher)

    if kind == "sshd_config":
        # The directive is the locator; the config itself has no attributes
        if not its:
            raise PolicyError(f"{where}: sshd_config assertions need 'its: <Directive>'")
        _check_text_matcher(matcher, where)
        selector = ResourceSelector(kind, its)
        attribute = None
    else:
        if its and prop and its != prop:
            raise PolicyError(f"{where}: 'its: {its}' conflicts with 'be: {prop}'")
        selector = ResourceSelector(kind, str(name))
        attribute = its or prop

    if not probe_cls.supports(attribute):
        raise PolicyError(f"{where}: resource '{kind}' has no attribute '{attribute}'")

    return Assertion(resource=selector, matcher=matcher, attribute=attribute)


def _check_text_matcher(matcher: Matcher, where: str) -> None:
    """Config directives are always text: boolean matchers could never pass."""
    while isinstance(matcher, Negated):
        matcher = matcher.inner
    if isinstance(matcher, Equals) and isinstance(matcher.expected, bool):
        word = "yes" if matcher.expected else "no"
        raise MatcherError(
            f"{where}: eq {str(matcher.expected).lower()} compares a directive with a boolean; "
            f"quote the value (eq: \"{word}\")"
        )
    if isinstance(matcher, BooleanProperty):
        raise MatcherError(f"{where}: sshd_config directives have no property '{matcher.name}'")
