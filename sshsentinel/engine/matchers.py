from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from .errors import MatcherError
from .values import Absent, BoolValue, ResolvedValue, StringList, StringValue


# ---------------------------------------------------------------------------
# Matcher expressions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Equals:
    expected: Union[str, bool]

    def describe(self) -> str:
        if isinstance(self.expected, bool):
            return f"eq {str(self.expected).lower()}"
        return f"eq {self.expected!r}"


@dataclass(frozen=True)
class Matches:
    pattern: re.Pattern

    def describe(self) -> str:
        return f"match /{self.pattern.pattern}/"


@dataclass(frozen=True)
class NotNil:
    def describe(self) -> str:
        return "not be nil"


@dataclass(frozen=True)
class Empty:
    def describe(self) -> str:
        return "be empty"


@dataclass(frozen=True)
class BooleanProperty:
    name: str

    def describe(self) -> str:
        return f"be {self.name}"


@dataclass(frozen=True)
class Negated:
    inner: "Matcher"

    def describe(self) -> str:
        inner = self.inner
        if isinstance(inner, NotNil):
            return "be nil"
        return f"not {inner.describe()}"


Matcher = Union[Equals, Matches, NotNil, Empty, BooleanProperty, Negated]


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _equals(expected: Union[str, bool], value: ResolvedValue) -> bool:
    if isinstance(value, BoolValue):
        return isinstance(expected, bool) and value.value is expected
    if isinstance(expected, bool):
        return False
    if isinstance(value, StringValue):
        return value.value == expected
    if isinstance(value, StringList):
        return expected in value.values
    return False


def _matches(pattern: re.Pattern, value: ResolvedValue) -> bool:
    if isinstance(value, StringValue):
        return pattern.search(value.value) is not None
    if isinstance(value, StringList):
        return any(pattern.search(v) is not None for v in value.values)
    return False


def _empty(value: ResolvedValue) -> bool:
    if value is Absent:
        return True
    if isinstance(value, StringValue):
        return value.value == ""
    if isinstance(value, StringList):
        return len(value.values) == 0
    return False


def evaluate(matcher: Matcher, value: ResolvedValue) -> bool:
    """
    Apply one matcher to an already resolved value.

    Pure: no I/O, same answer for the same inputs. Absent never equals or
    matches anything; a StringList passes Equals/Matches when any element
    does.
    """
    if isinstance(matcher, Negated):
        return not evaluate(matcher.inner, value)
    if isinstance(matcher, Equals):
        return _equals(matcher.expected, value)
    if isinstance(matcher, Matches):
        return _matches(matcher.pattern, value)
    if isinstance(matcher, NotNil):
        return value is not Absent
    if isinstance(matcher, Empty):
        return _empty(value)
    if isinstance(matcher, BooleanProperty):
        return isinstance(value, BoolValue) and value.value
    raise TypeError(f"unsupported matcher {matcher!r}")


# ---------------------------------------------------------------------------
# Building matchers from policy data
# ---------------------------------------------------------------------------

# Keys accepted inside a "should" mapping
MATCHER_KEYS = ("eq", "match", "be", "be_nil", "be_empty", "not")


def build_matcher(form: Any) -> Matcher:
    """
    Build a matcher from its policy form.

    Accepted forms (one key per mapping):

        {eq: "no"}            -> Equals
        {match: "aes256-ctr"} -> Matches (regex search)
        {be: installed}       -> BooleanProperty
        {be_nil: true}        -> Negated(NotNil); false gives NotNil
        {be_empty: true}      -> Empty; false gives Negated(Empty)
        {not: {...}}          -> Negated(inner)

    Raises MatcherError for anything else, including invalid regexes.
    """
    if not isinstance(form, dict) or len(form) != 1:
        raise MatcherError(f"matcher must be a mapping with exactly one of {', '.join(MATCHER_KEYS)}: {form!r}")

    kind, arg = next(iter(form.items()))

    if kind == "eq":
        if isinstance(arg, bool):
            return Equals(arg)
        if arg is None or isinstance(arg, (dict, list)):
            raise MatcherError(f"eq needs a scalar value, got {arg!r}")
        # YAML turns 2 or 900 into ints; the config holds text
        return Equals(str(arg))

    if kind == "match":
        if not isinstance(arg, str):
            raise MatcherError(f"match needs a regex string, got {arg!r}")
        try:
            return Matches(re.compile(arg))
        except re.error as e:
            raise MatcherError(f"invalid regex {arg!r}: {e}") from e

    if kind == "be":
        if not isinstance(arg, str) or not arg:
            raise MatcherError(f"be needs a property name, got {arg!r}")
        return BooleanProperty(arg)

    if kind == "be_nil":
        if not isinstance(arg, bool):
            raise MatcherError(f"be_nil needs true or false, got {arg!r}")
        return Negated(NotNil()) if arg else NotNil()

    if kind == "be_empty":
        if not isinstance(arg, bool):
            raise MatcherError(f"be_empty needs true or false, got {arg!r}")
        return Empty() if arg else Negated(Empty())

    if kind == "not":
        return Negated(build_matcher(arg))

    raise MatcherError(f"unknown matcher '{kind}' (expected one of {', '.join(MATCHER_KEYS)})")


def property_name(matcher: Matcher) -> Optional[str]:
    """Name of the BooleanProperty at the core of a matcher, if any."""
    while isinstance(matcher, Negated):
        matcher = matcher.inner
    if isinstance(matcher, BooleanProperty):
        return matcher.name
    return None

