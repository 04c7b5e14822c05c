from __future__ import annotations

import grp
import logging
import os
import pwd
import stat
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from .errors import ResolutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceStatus:
    name: str
    found: bool
    installed: bool = False
    enabled: bool = False
    running: bool = False


@dataclass(frozen=True)
class FileStat:
    path: str
    exists: bool
    is_file: bool = False
    is_dir: bool = False
    owner: Optional[str] = None
    group: Optional[str] = None
    st_mode: Optional[int] = None
    size: Optional[int] = None


class Target(Protocol):
    """
    Read-only access to the system being evaluated.

    Implementations never change target state. File methods raise OSError
    subclasses; service queries raise ResolutionError when the status
    cannot be determined.
    """

    def service_status(self, name: str, timeout: float) -> ServiceStatus: ...

    def stat(self, path: str) -> FileStat: ...

    def read_bytes(self, path: str) -> bytes: ...


# ---------------------------------------------------------------------------
# Local host
# ---------------------------------------------------------------------------


def run_cmd(cmd: List[str], timeout: float) -> Tuple[int, str, str]:
    """
    Run a command and return (returncode, stdout, stderr).

    Raises ResolutionError when the command is missing or times out.
    """
    try:
        p = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, check=False)
    except subprocess.TimeoutExpired as e:
        raise ResolutionError(" ".join(cmd), f"timed out after {timeout:g}s") from e
    except FileNotFoundError as e:
        raise ResolutionError(" ".join(cmd), f"command not found: {cmd[0]}") from e
    return p.returncode, (p.stdout or "").strip(), (p.stderr or "").strip()


def _parse_properties(text: str) -> Dict[str, str]:
    props: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            props[key.strip()] = value.strip()
    return props


ENABLED_STATES = {"enabled", "enabled-runtime"}


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


class LocalTarget:
    """The machine the engine runs on, queried through systemd and the filesystem."""

    def __init__(self, systemctl: str = "systemctl"):
        self.systemctl = systemctl

    def service_status(self, name: str, timeout: float) -> ServiceStatus:
        cmd = [
            self.systemctl, "show", name, "--no-pager",
            "--property=LoadState,ActiveState,UnitFileState",
        ]
        rc, out, err = run_cmd(cmd, timeout)
        if rc != 0:
            raise ResolutionError(f"service {name}", err or f"systemctl exited with code {rc}")

        props = _parse_properties(out)
        load_state = props.get("LoadState", "")
        logger.debug("service %s: %s", name, props)

        if load_state in ("", "not-found"):
            return ServiceStatus(name=name, found=False)

        return ServiceStatus(
            name=name,
            found=True,
            installed=load_state in ("loaded", "masked"),
            enabled=props.get("UnitFileState", "") in ENABLED_STATES,
            running=props.get("ActiveState", "") == "active",
        )

    def stat(self, path: str) -> FileStat:
        try:
            st = os.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            return FileStat(path=path, exists=False)

        return FileStat(
            path=path,
            exists=True,
            is_file=stat.S_ISREG(st.st_mode),
            is_dir=stat.S_ISDIR(st.st_mode),
            owner=_user_name(st.st_uid),
            group=_group_name(st.st_gid),
            st_mode=st.st_mode,
            size=st.st_size,
        )

    def read_bytes(self, path: str) -> bytes:
        return Path(path).read_bytes()
