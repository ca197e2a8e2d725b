"""Resolve processes and cgroups to the Kubernetes containers they belong to."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

SYSTEM_PROCESS_NAME = "system_processes"
SYSTEM_PROCESS_NAMESPACE = "system"

UNKNOWN_PATH = "unknown"
DEFAULT_PROC_PATH = "/proc/%d/cgroup"
DEFAULT_CGROUP_ROOT = "/sys/fs/cgroup"

_FIND_CONTAINER_ID_PATH = re.compile(r".*-(.*?)\.scope")
_REPLACE_CONTAINER_ID_PATH_PREFIX = re.compile(r".*-")
# some platforms (e.g. RHEL) have a different cgroup path layout
_FIND_CONTAINER_ID_PATH2 = re.compile(r"[^:]*\Z")
_REPLACE_CONTAINER_ID_PATH_SUFFIX = re.compile(r"\..*")
_REPLACE_CONTAINER_ID_PREFIX = re.compile(r".*//")

_RUNTIMES = ("crio", "docker", "containerd")


class CgroupError(Exception):
    """A cgroup lookup failed; ``fallback`` holds the value the lookup falls back to."""

    def __init__(self, message: str, fallback: Any = None) -> None:
        super().__init__(message)
        self.fallback = fallback


@dataclass(frozen=True)
class ContainerInfo:
    """Identity of a container inside a pod."""

    container_id: str
    container_name: str
    pod_name: str
    namespace: str


@dataclass(frozen=True)
class ContainerStatus:
    """The status entry of one container as reported for a pod."""

    container_id: str = ""
    name: str = ""


@dataclass
class Pod:
    """A pod and the statuses of its containers."""

    name: str = ""
    namespace: str = ""
    container_statuses: list[ContainerStatus] = field(default_factory=list)
    init_container_statuses: list[ContainerStatus] = field(default_factory=list)
    ephemeral_container_statuses: list[ContainerStatus] = field(default_factory=list)

    def all_statuses(self) -> Iterable[ContainerStatus]:
        """Yield regular, init and ephemeral container statuses in that order."""
        yield from self.container_statuses
        yield from self.init_container_statuses
        yield from self.ephemeral_container_statuses


class PodLister(Protocol):
    def list_pods(self) -> list[Pod]: ...


def _system_info() -> ContainerInfo:
    return ContainerInfo(
        container_id=SYSTEM_PROCESS_NAME,
        container_name=SYSTEM_PROCESS_NAME,
        pod_name=SYSTEM_PROCESS_NAME,
        namespace=SYSTEM_PROCESS_NAMESPACE,
    )


def parse_container_id_from_pod_status(container_id: str) -> str:
    """Strip the runtime scheme (e.g. 'containerd://') from a status container id."""
    return _REPLACE_CONTAINER_ID_PREFIX.sub("", container_id)


def extract_pod_container_id_from_path(path: str, cgroup_version: int) -> str:
    """Extract a container id from a cgroup path; cgroup v1 and v2 differ."""
    for match in _FIND_CONTAINER_ID_PATH.finditer(path):
        element = match.group(0)
        if cgroup_version == 2 and ("-conmon-" in element or ".service" in element):
            raise CgroupError("process is not in a kubernetes pod", fallback="")
        if any(runtime in element for runtime in _RUNTIMES):
            container_id = _REPLACE_CONTAINER_ID_PATH_PREFIX.sub("", element)
            return _REPLACE_CONTAINER_ID_PATH_SUFFIX.sub("", container_id)
    # some platforms keep the container id as the last path component
    match = _FIND_CONTAINER_ID_PATH2.search(path)
    if match is not None:
        return match.group(0)
    raise CgroupError("failed to find pod's container id", fallback=SYSTEM_PROCESS_NAME)


def get_path_from_pid(search_path: str, pid: int) -> str:
    """Return the first line of a process cgroup file that refers to a pod or runtime."""
    path = search_path % pid
    try:
        with open(path, encoding="utf-8") as handle:
            for line in handle:
                line = line.rstrip("\n")
                if "pod" in line or "containerd" in line or "crio" in line:
                    return line
    except OSError as exc:
        raise CgroupError(
            f"failed to open cgroup description file for pid {pid}: {exc}"
        ) from exc
    raise CgroupError(f"could not find cgroup description entry for pid {pid}")


def cgroup_id_from_path(path: str) -> int:
    """Return the cgroup id of a cgroup v2 directory (its inode number)."""
    return os.stat(path).st_ino


def alive_containers(pods: Iterable[Pod]) -> set[str]:
    """Collect the ids of all containers reported in the given pods."""
    return {
        parse_container_id_from_pod_status(status.container_id)
        for pod in pods
        for status in (
            *pod.init_container_statuses,
            *pod.container_statuses,
            *pod.ephemeral_container_statuses,
        )
    }


class ContainerResolver:
    """Maps pids and cgroup ids to container identities, with caches."""

    def __init__(
        self,
        pod_lister: PodLister,
        cgroup_root: str = DEFAULT_CGROUP_ROOT,
        proc_path: str = DEFAULT_PROC_PATH,
        cgroup_version: int = 2,
    ) -> None:
        self.pod_lister = pod_lister
        self.cgroup_root = cgroup_root
        self.proc_path = proc_path
        self.cgroup_version = cgroup_version
        self.container_infos: dict[str, ContainerInfo] = {}
        self._container_id_cache: dict[int, str] = {}
        self._cgroup_id_to_path: dict[int, str] = {}

    def update_list_pod_cache(
        self, target_container_id: str = "", stop_when_found: bool = False
    ) -> list[Pod]:
        """Refresh container info from the pod list, optionally stopping at a target."""
        pods = self.pod_lister.list_pods()
        for pod in pods:
            for status in pod.all_statuses():
                container_id = parse_container_id_from_pod_status(status.container_id)
                self.container_infos[container_id] = ContainerInfo(
                    container_id=container_id,
                    container_name=status.name,
                    pod_name=pod.name,
                    namespace=pod.namespace,
                )
                if stop_when_found and status.container_id == target_container_id:
                    return pods
        return pods

    def get_container_info(
        self, cgroup_id: int, pid: int, with_cgroup_id: bool
    ) -> ContainerInfo:
        """Resolve a container; unknown containers map to the system process info."""
        info = _system_info()
        try:
            container_id = self._container_id_from_path(cgroup_id, pid, with_cgroup_id)
        except CgroupError as exc:
            raise CgroupError(str(exc), fallback=info) from exc

        cached = self.container_infos.get(container_id)
        if cached is not None:
            return cached

        try:
            self.update_list_pod_cache(container_id, True)
        except Exception as exc:  # the pod list is a best-effort refresh
            logger.debug("failed to list pods: %s", exc)
        cached = self.container_infos.get(container_id)
        if cached is not None:
            return cached

        # not a kubernetes container: account it to the system processes
        self.container_infos[container_id] = info
        self.container_infos.setdefault(SYSTEM_PROCESS_NAME, info)
        return self.container_infos[SYSTEM_PROCESS_NAME]

    def _info_field(
        self, cgroup_id: int, pid: int, with_cgroup_id: bool, attr: str
    ) -> str:
        try:
            info = self.get_container_info(cgroup_id, pid, with_cgroup_id)
        except CgroupError as exc:
            fallback = exc.fallback
            value = getattr(fallback, attr) if isinstance(fallback, ContainerInfo) else None
            raise CgroupError(str(exc), fallback=value) from exc
        return getattr(info, attr)

    def get_pod_name(self, cgroup_id: int, pid: int, with_cgroup_id: bool) -> str:
        return self._info_field(cgroup_id, pid, with_cgroup_id, "pod_name")

    def get_pod_namespace(self, cgroup_id: int, pid: int, with_cgroup_id: bool) -> str:
        return self._info_field(cgroup_id, pid, with_cgroup_id, "namespace")

    def get_container_name(self, cgroup_id: int, pid: int, with_cgroup_id: bool) -> str:
        return self._info_field(cgroup_id, pid, with_cgroup_id, "container_name")

    def get_container_id(self, cgroup_id: int, pid: int, with_cgroup_id: bool) -> str:
        return self._info_field(cgroup_id, pid, with_cgroup_id, "container_id")

    def _container_id_from_path(
        self, cgroup_id: int, pid: int, with_cgroup_id: bool
    ) -> str:
        if with_cgroup_id:
            return self.get_container_id_from_cgroup_id(cgroup_id)
        return self.get_container_id_from_pid(pid)

    def add_container_id_to_cache(self, key: int, container_id: str) -> None:
        """Cache a container id under a pid or cgroup id."""
        self._container_id_cache[key] = container_id

    def _resolve_and_cache(self, key: int, path: str) -> str:
        try:
            container_id = extract_pod_container_id_from_path(path, self.cgroup_version)
        except CgroupError as exc:
            self.add_container_id_to_cache(key, exc.fallback)
            raise
        self.add_container_id_to_cache(key, container_id)
        return container_id

    def get_container_id_from_pid(self, pid: int) -> str:
        """Find the container id of a process through its cgroup file."""
        if pid in self._container_id_cache:
            return self._container_id_cache[pid]
        try:
            path = get_path_from_pid(self.proc_path, pid)
        except CgroupError as exc:
            raise CgroupError(str(exc), fallback=SYSTEM_PROCESS_NAME) from exc
        return self._resolve_and_cache(pid, path)

    def get_container_id_from_cgroup_id(self, cgroup_id: int) -> str:
        """Find the container id of a cgroup through its cgroupfs path."""
        if cgroup_id in self._container_id_cache:
            return self._container_id_cache[cgroup_id]
        try:
            path = self.get_path_from_cgroup_id(cgroup_id)
        except CgroupError as exc:
            raise CgroupError(str(exc), fallback=SYSTEM_PROCESS_NAME) from exc
        return self._resolve_and_cache(cgroup_id, path)

    def get_path_from_cgroup_id(self, cgroup_id: int) -> str:
        """Map a cgroup id to its directory under the cgroup root, or 'unknown'."""
        if cgroup_id in self._cgroup_id_to_path:
            return self._cgroup_id_to_path[cgroup_id]

        walk_errors: list[OSError] = []
        try:
            for dirpath, _dirnames, _filenames in os.walk(
                self.cgroup_root, onerror=walk_errors.append
            ):
                if walk_errors:
                    break
                try:
                    found_id = cgroup_id_from_path(dirpath)
                except OSError as exc:
                    raise CgroupError(f"error resolving handle: {exc}") from exc
                self._cgroup_id_to_path[found_id] = dirpath
            if walk_errors:
                raise walk_errors[0]
        except (OSError, CgroupError) as exc:
            raise CgroupError(
                f"failed to find cgroup id: {exc}", fallback=UNKNOWN_PATH
            ) from exc

        return self._cgroup_id_to_path.setdefault(cgroup_id, UNKNOWN_PATH)

    def get_alive_containers(self) -> set[str]:
        """Return the ids of every container currently listed in a pod."""
        return alive_containers(self.pod_lister.list_pods())