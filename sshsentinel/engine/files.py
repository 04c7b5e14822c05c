from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .errors import ParseError
from .values import Absent, ResolvedValue, StringList, StringValue

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Grammar: how repeated directives are merged
# ---------------------------------------------------------------------------


class DirectivePolicy(Enum):
    FIRST = "first"            # first occurrence wins, later ones ignored
    LAST = "last"              # later occurrence overwrites
    ACCUMULATE = "accumulate"  # every occurrence kept, in file order


@dataclass(frozen=True)
class Grammar:
    name: str
    default: DirectivePolicy
    overrides: Dict[str, DirectivePolicy] = field(default_factory=dict)
    # Header directive opening a conditional block (sshd "Match")
    block_keyword: Optional[str] = None

    def policy_for(self, directive: str) -> DirectivePolicy:
        return self.overrides.get(directive.lower(), self.default)


def _table(policy: DirectivePolicy, names: Iterable[str]) -> Dict[str, DirectivePolicy]:
    return {n.lower(): policy for n in names}


# sshd_config(5): "For each keyword, the first obtained value will be used."
SSHD_GRAMMAR = Grammar(
    name="sshd_config",
    default=DirectivePolicy.FIRST,
    overrides=_table(DirectivePolicy.ACCUMULATE, [
        "AllowUsers", "DenyUsers", "AllowGroups", "DenyGroups",
        "Port", "ListenAddress", "HostKey", "HostCertificate",
        "AcceptEnv", "Subsystem", "Include", "SetEnv",
    ]),
    block_keyword="match",
)

KV_GRAMMAR = Grammar(name="key-value", default=DirectivePolicy.LAST)


# ---------------------------------------------------------------------------
# Parsed model
# ---------------------------------------------------------------------------


@dataclass
class MatchBlock:
    criteria: str
    directives: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class ConfigModel:
    """
    Directive name (lower-cased) -> one or more raw values.

    Built once per run and only read afterwards.
    """
    directives: Dict[str, List[str]] = field(default_factory=dict)
    # Spelling of each directive as first seen in the file, for display
    display_names: Dict[str, str] = field(default_factory=dict)
    match_blocks: List[MatchBlock] = field(default_factory=list)

    def lookup(self, name: str) -> ResolvedValue:
        values = self.directives.get(name.lower())
        if not values:
            return Absent
        if len(values) == 1:
            return StringValue(values[0])
        return StringList(tuple(values))

    def names(self) -> List[str]:
        return [self.display_names[k] for k in self.directives]

    def __contains__(self, name: str) -> bool:
        return name.lower() in self.directives


# ---------------------------------------------------------------------------
# Line handling
# ---------------------------------------------------------------------------


def _strip_comment(line: str) -> str:
    in_quotes = False
    for i, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == "#" and not in_quotes:
            return line[:i]
    return line


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"' and '"' not in value[1:-1]:
        return value[1:-1]
    return value


def split_directive(line: str) -> Optional[Tuple[str, str]]:
    """
    Split one non-comment line into (directive, value).

    The directive is separated from its value by whitespace and/or a single
    '=' (sshd accepts both "Port 22" and "Port=22"). Returns None for lines
    that carry no usable directive.
    """
    line = line.strip()
    if not line:
        return None

    end = 0
    while end < len(line) and not line[end].isspace() and line[end] != "=":
        end += 1
    directive = line[:end]
    rest = line[end:].lstrip()
    if rest.startswith("="):
        rest = rest[1:].lstrip()

    if not directive or not directive[0].isalpha():
        return None
    value = rest.strip()
    if not value:
        return None
    return directive, _unquote(value)


def _store(target: Dict[str, List[str]], key: str, value: str, grammar: Grammar) -> None:
    policy = grammar.policy_for(key)
    existing = target.get(key)

    if existing is None:
        target[key] = [value]
    elif policy is DirectivePolicy.ACCUMULATE:
        existing.append(value)
    elif policy is DirectivePolicy.LAST:
        target[key] = [value]
    else:
        logger.debug("ignoring repeated directive %s (first value wins)", key)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def decode_config(raw: Union[str, bytes]) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"configuration is not valid UTF-8 text: {e}") from e


def parse_config(raw: Union[str, bytes], grammar: Grammar = SSHD_GRAMMAR) -> ConfigModel:
    """
    Parse a line-oriented "directive value" file into a ConfigModel.

    Bad lines are skipped; only undecodable input raises ParseError.
    """
    text = decode_config(raw)
    model = ConfigModel()
    current: Dict[str, List[str]] = model.directives

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = _strip_comment(raw_line).strip()
        if not line:
            continue

        parts = split_directive(line)
        if parts is None:
            logger.debug("skipping malformed line %d: %r", lineno, raw_line)
            continue

        directive, value = parts
        key = directive.lower()

        if grammar.block_keyword and key == grammar.block_keyword:
            block = MatchBlock(criteria=value)
            model.match_blocks.append(block)
            current = block.directives
            continue

        if current is model.directives:
            model.display_names.setdefault(key, directive)
        _store(current, key, value, grammar)

    return model

