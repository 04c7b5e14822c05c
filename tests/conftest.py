import stat
import time

import pytest

from sshsentinel.engine.errors import ResolutionError
from sshsentinel.engine.target import FileStat, ServiceStatus


class FakeTarget:
    """In-memory target: services, files and failures are declared up front."""

    def __init__(self):
        self.services = {}
        self.files = {}
        self.contents = {}
        self.stat_errors = {}
        self.read_errors = {}
        self.slow = {}
        self.calls = []

    def add_service(self, name, installed=True, enabled=True, running=True):
        self.services[name] = ServiceStatus(name=name, found=True, installed=installed,
                                            enabled=enabled, running=running)

    def add_file(self, path, content=b"", owner="root", group="root", mode=0o644):
        self.files[path] = FileStat(
            path=path, exists=True, is_file=True, is_dir=False,
            owner=owner, group=group, st_mode=stat.S_IFREG | mode, size=len(content),
        )
        self.contents[path] = content

    def add_dir(self, path, owner="root", group="root", mode=0o755):
        self.files[path] = FileStat(
            path=path, exists=True, is_file=False, is_dir=True,
            owner=owner, group=group, st_mode=stat.S_IFDIR | mode, size=4096,
        )

    def service_status(self, name, timeout):
        self.calls.append(("service", name))
        if name in self.slow:
            time.sleep(self.slow[name])
        if name in self.stat_errors:
            raise ResolutionError(f"service {name}", self.stat_errors[name])
        return self.services.get(name, ServiceStatus(name=name, found=False))

    def stat(self, path):
        self.calls.append(("stat", path))
        if path in self.stat_errors:
            raise PermissionError(13, self.stat_errors[path])
        return self.files.get(path, FileStat(path=path, exists=False))

    def read_bytes(self, path):
        self.calls.append(("read", path))
        if path in self.read_errors:
            raise PermissionError(13, self.read_errors[path])
        if path not in self.contents:
            raise FileNotFoundError(2, "No such file or directory", path)
        return self.contents[path]


@pytest.fixture
def target():
    return FakeTarget()
