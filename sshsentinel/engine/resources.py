from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, Optional

from .errors import ResolutionError
from .files import ConfigModel
from .target import FileStat, ServiceStatus, Target
from .values import Absent, BoolValue, FileMode, ResolvedValue, StringValue, WHO

logger = logging.getLogger(__name__)


class ResourceProbe:
    """
    One typed, read-only view of live system state.

    Subclasses declare the attributes they can resolve in ``attributes`` so
    that policies can be checked at load time. ``resolve`` returns a
    ResolvedValue or raises ResolutionError when the answer cannot be
    determined. ``resolution_failed`` is set when the resource itself does
    not exist in a way that makes the whole control unevaluable.
    """

    kind = ""
    attributes: FrozenSet[str] = frozenset()

    def __init__(self, locator: Optional[str]):
        self.locator = locator
        self.resolution_failed = False
        self.failure_reason: Optional[str] = None

    def describe(self) -> str:
        return f"{self.kind}({self.locator})" if self.locator else self.kind

    def resolve(self, attribute: Optional[str]) -> ResolvedValue:
        raise NotImplementedError

    @classmethod
    def supports(cls, attribute: Optional[str]) -> bool:
        return attribute in cls.attributes


# ---------------------------------------------------------------------------
# service(name)
# ---------------------------------------------------------------------------


class ServiceResource(ResourceProbe):
    kind = "service"
    attributes = frozenset({"installed", "enabled", "running"})

    def __init__(self, target: Target, name: str, timeout: float):
        super().__init__(name)
        self.target = target
        self.name = name
        self.timeout = timeout
        self._status: Optional[ServiceStatus] = None

    def _load(self) -> ServiceStatus:
        if self._status is None:
            self._status = self.target.service_status(self.name, self.timeout)
            if not self._status.found:
                self.resolution_failed = True
                self.failure_reason = f"service '{self.name}' does not exist"
                logger.info("service %s not found on target", self.name)
        return self._status

    def resolve(self, attribute: Optional[str]) -> ResolvedValue:
        status = self._load()
        if not status.found:
            return Absent
        return BoolValue(bool(getattr(status, attribute)))


# ---------------------------------------------------------------------------
# file(path)
# ---------------------------------------------------------------------------


def _permission_attributes() -> Dict[str, Callable[[FileMode], bool]]:
    table: Dict[str, Callable[[FileMode], bool]] = {}
    for who in WHO:
        table[f"readable_by_{who}"] = lambda m, w=who: m.readable_by(w)
        table[f"writable_by_{who}"] = lambda m, w=who: m.writable_by(w)
        table[f"executable_by_{who}"] = lambda m, w=who: m.executable_by(w)
    return table


PERMISSION_QUERIES = _permission_attributes()

_ALIASES = {
    "isFile": "file",
    "isDirectory": "directory",
    "owned_by": "owner",
    "grouped_into": "group",
}


class FileResource(ResourceProbe):
    kind = "file"
    attributes = frozenset(
        {"exists", "owner", "group", "mode", "content", "file", "directory", "size"}
        | set(_ALIASES)
        | set(PERMISSION_QUERIES)
    )

    def __init__(self, target: Target, path: str):
        super().__init__(path)
        self.target = target
        self.path = path
        self._stat: Optional[FileStat] = None

    def _load(self) -> FileStat:
        if self._stat is None:
            try:
                self._stat = self.target.stat(self.path)
            except OSError as e:
                raise ResolutionError(self.describe(), e.strerror or str(e)) from e
        return self._stat

    def resolve(self, attribute: Optional[str]) -> ResolvedValue:
        attribute = _ALIASES.get(attribute, attribute)
        st = self._load()

        if attribute == "exists":
            return BoolValue(st.exists)
        if not st.exists:
            return Absent

        if attribute == "file":
            return BoolValue(st.is_file)
        if attribute == "directory":
            return BoolValue(st.is_dir)
        if attribute == "owner":
            return StringValue(st.owner) if st.owner is not None else Absent
        if attribute == "group":
            return StringValue(st.group) if st.group is not None else Absent
        if attribute == "size":
            return StringValue(str(st.size)) if st.size is not None else Absent
        if attribute == "mode":
            return StringValue(FileMode.from_st_mode(st.st_mode).octal) if st.st_mode is not None else Absent
        if attribute in PERMISSION_QUERIES:
            if st.st_mode is None:
                return Absent
            return BoolValue(PERMISSION_QUERIES[attribute](FileMode.from_st_mode(st.st_mode)))
        if attribute == "content":
            return self._content()

        raise ResolutionError(self.describe(), f"unknown attribute '{attribute}'")

    def _content(self) -> ResolvedValue:
        if not self._stat.is_file:
            return Absent
        try:
            raw = self.target.read_bytes(self.path)
        except FileNotFoundError:
            return Absent
        except OSError as e:
            raise ResolutionError(self.describe(), e.strerror or str(e)) from e
        return StringValue(raw.decode("utf-8", errors="replace"))


# ---------------------------------------------------------------------------
# sshd_config
# ---------------------------------------------------------------------------


class ConfigResource(ResourceProbe):
    """A directive looked up in an already parsed ConfigModel."""

    kind = "sshd_config"

    def __init__(self, model: ConfigModel, directive: str):
        super().__init__(directive)
        self.model = model
        self.directive = directive

    def resolve(self, attribute: Optional[str]) -> ResolvedValue:
        return self.model.lookup(self.directive)

    @classmethod
    def supports(cls, attribute: Optional[str]) -> bool:
        return attribute is None


RESOURCE_KINDS = {
    ServiceResource.kind: ServiceResource,
    FileResource.kind: FileResource,
    ConfigResource.kind: ConfigResource,
}
