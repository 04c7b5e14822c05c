from __future__ import annotations

import stat
from dataclasses import dataclass
from typing import Tuple, Union


# ---------------------------------------------------------------------------
# Resolved values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StringValue:
    value: str

    def __str__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class StringList:
    values: Tuple[str, ...]

    def __str__(self) -> str:
        return "[" + ", ".join(repr(v) for v in self.values) + "]"


@dataclass(frozen=True)
class BoolValue:
    value: bool

    def __str__(self) -> str:
        return "true" if self.value else "false"


class _AbsentType:
    """
    Marker for "this property does not exist on the target".

    Never equal to an empty string or an empty list.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "Absent"

    def __str__(self) -> str:
        return "nil"

    def __bool__(self) -> bool:
        return False


Absent = _AbsentType()

ResolvedValue = Union[StringValue, StringList, BoolValue, _AbsentType]


def is_absent(value: ResolvedValue) -> bool:
    return value is Absent


# ---------------------------------------------------------------------------
# File permissions
# ---------------------------------------------------------------------------

WHO = ("owner", "group", "others")

_READ = {"owner": stat.S_IRUSR, "group": stat.S_IRGRP, "others": stat.S_IROTH}
_WRITE = {"owner": stat.S_IWUSR, "group": stat.S_IWGRP, "others": stat.S_IWOTH}
_EXEC = {"owner": stat.S_IXUSR, "group": stat.S_IXGRP, "others": stat.S_IXOTH}


@dataclass(frozen=True)
class FileMode:
    """Permission bits of a file, queryable per class of user."""

    bits: int

    @classmethod
    def from_st_mode(cls, st_mode: int) -> "FileMode":
        return cls(stat.S_IMODE(st_mode))

    def _check(self, table, who: str) -> bool:
        if who not in table:
            raise ValueError(f"unknown permission class '{who}' (expected one of {', '.join(WHO)})")
        return bool(self.bits & table[who])

    def readable_by(self, who: str) -> bool:
        return self._check(_READ, who)

    def writable_by(self, who: str) -> bool:
        return self._check(_WRITE, who)

    def executable_by(self, who: str) -> bool:
        return self._check(_EXEC, who)

    @property
    def octal(self) -> str:
        return format(self.bits, "04o")
