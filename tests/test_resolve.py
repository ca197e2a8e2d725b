import os

import pytest

from kepler.resolve import (
    SYSTEM_PROCESS_NAME,
    SYSTEM_PROCESS_NAMESPACE,
    CgroupError,
    ContainerInfo,
    ContainerResolver,
    ContainerStatus,
    Pod,
    alive_containers,
    cgroup_id_from_path,
    extract_pod_container_id_from_path,
    get_path_from_pid,
    parse_container_id_from_pod_status,
)


class _Lister:
    def __init__(self, pods, fail=False):
        self.pods = pods
        self.fail = fail
        self.calls = 0

    def list_pods(self):
        self.calls += 1
        if self.fail:
            raise CgroupError("kubelet unavailable")
        return list(self.pods)


def _statuses(*ids):
    return [ContainerStatus(container_id=cid) for cid in ids]


NORMAL_PODS = [
    Pod(
        init_container_statuses=_statuses("a1"),
        container_statuses=_statuses("a2", "c1"),
        ephemeral_container_statuses=_statuses("a3"),
    ),
    Pod(
        init_container_statuses=_statuses("b1", "c2"),
        container_statuses=_statuses("b2"),
        ephemeral_container_statuses=_statuses("b3", "c3"),
    ),
]


def test_alive_containers_normal_status():
    assert alive_containers(NORMAL_PODS) == {
        "a1", "a2", "a3", "b1", "b2", "b3", "c1", "c2", "c3",
    }


def test_alive_containers_strips_runtime_prefix():
    pods = [Pod(container_statuses=_statuses("containerd://abc"))]
    assert alive_containers(pods) == {"abc"}


def test_get_alive_containers_uses_lister():
    resolver = ContainerResolver(_Lister(NORMAL_PODS))
    assert len(resolver.get_alive_containers()) == 9


def test_get_alive_containers_propagates_lister_error():
    resolver = ContainerResolver(_Lister([], fail=True))
    with pytest.raises(CgroupError):
        resolver.get_alive_containers()


@pytest.mark.parametrize(
    "raw, expected",
    [("containerd://abc123", "abc123"), ("cri-o://x", "x"), ("plain", "plain")],
)
def test_parse_container_id_from_pod_status(raw, expected):
    assert parse_container_id_from_pod_status(raw) == expected


def test_extract_from_v2_scope_path():
    path = "0::/kubepods.slice/kubepods-besteffort.slice/cri-containerd-abc123.scope"
    assert extract_pod_container_id_from_path(path, 2) == "abc123"


def test_extract_conmon_on_v2_is_not_a_pod():
    with pytest.raises(CgroupError) as info:
        extract_pod_container_id_from_path("0::/machine.slice/crio-conmon-abc.scope", 2)
    assert info.value.fallback == ""


def test_extract_conmon_on_v1_falls_back_to_last_component():
    path = "1:name=systemd:/machine.slice/libpod-conmon-abc.scope"
    assert extract_pod_container_id_from_path(path, 1) == "/machine.slice/libpod-conmon-abc.scope"


def test_extract_rhel_style_path():
    path = "11:cpu:/kubepods/besteffort/pod1/abcdef"
    assert extract_pod_container_id_from_path(path, 1) == "/kubepods/besteffort/pod1/abcdef"


def test_get_path_from_pid_finds_pod_line(tmp_path):
    (tmp_path / "cgroup_42").write_text(
        "0::/user.slice\n1:name=systemd:/kubepods/pod1/crio-abc.scope\n"
    )
    search = str(tmp_path / "cgroup_%d")
    assert get_path_from_pid(search, 42) == "1:name=systemd:/kubepods/pod1/crio-abc.scope"


def test_get_path_from_pid_without_pod_line(tmp_path):
    (tmp_path / "cgroup_1").write_text("0::/user.slice\n")
    with pytest.raises(CgroupError):
        get_path_from_pid(str(tmp_path / "cgroup_%d"), 1)


def test_get_path_from_pid_missing_file(tmp_path):
    with pytest.raises(CgroupError):
        get_path_from_pid(str(tmp_path / "cgroup_%d"), 7)


def test_cgroup_id_from_path_distinguishes_directories(tmp_path):
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.mkdir()
    second.mkdir()
    assert cgroup_id_from_path(str(first)) == cgroup_id_from_path(str(first))
    assert cgroup_id_from_path(str(first)) != cgroup_id_from_path(str(second))


def test_cgroup_id_from_missing_path(tmp_path):
    with pytest.raises(OSError):
        cgroup_id_from_path(str(tmp_path / "missing"))


def _proc_resolver(tmp_path, pods, line, pid=42):
    (tmp_path / f"cgroup_{pid}").write_text(line + "\n")
    return ContainerResolver(
        _Lister(pods), proc_path=str(tmp_path / "cgroup_%d"), cgroup_version=2
    )


WEB_POD = Pod(
    name="web",
    namespace="default",
    container_statuses=[ContainerStatus(container_id="cri-o://abc123", name="app")],
)


def test_get_container_info_from_pid(tmp_path):
    resolver = _proc_resolver(tmp_path, [WEB_POD], "0::/kubepods.slice/crio-abc123.scope")
    info = resolver.get_container_info(0, 42, False)
    assert info == ContainerInfo("abc123", "app", "web", "default")
    assert resolver.get_pod_name(0, 42, False) == "web"
    assert resolver.get_pod_namespace(0, 42, False) == "default"
    assert resolver.get_container_name(0, 42, False) == "app"
    assert resolver.get_container_id(0, 42, False) == "abc123"


def test_unlisted_container_maps_to_system(tmp_path):
    resolver = _proc_resolver(tmp_path, [WEB_POD], "0::/kubepods.slice/crio-zzz.scope")
    info = resolver.get_container_info(0, 42, False)
    assert info.container_id == SYSTEM_PROCESS_NAME
    assert info.namespace == SYSTEM_PROCESS_NAMESPACE
    assert resolver.container_infos["zzz"].container_name == SYSTEM_PROCESS_NAME


def test_missing_proc_file_falls_back_to_system(tmp_path):
    resolver = ContainerResolver(_Lister([]), proc_path=str(tmp_path / "cgroup_%d"))
    with pytest.raises(CgroupError) as info:
        resolver.get_container_id(0, 99, False)
    assert info.value.fallback == SYSTEM_PROCESS_NAME


def test_conmon_failure_is_cached(tmp_path):
    resolver = _proc_resolver(tmp_path, [], "0::/kubepods.slice/crio-conmon-abc.scope")
    with pytest.raises(CgroupError):
        resolver.get_container_id_from_pid(42)
    assert resolver.get_container_id_from_pid(42) == ""


def test_add_container_id_to_cache():
    resolver = ContainerResolver(_Lister([]))
    resolver.add_container_id_to_cache(7, "xyz")
    assert resolver.get_container_id_from_pid(7) == "xyz"


def test_lister_failure_does_not_break_lookup(tmp_path):
    (tmp_path / "cgroup_5").write_text("0::/kubepods.slice/crio-q1.scope\n")
    resolver = ContainerResolver(
        _Lister([], fail=True), proc_path=str(tmp_path / "cgroup_%d")
    )
    assert resolver.get_container_id(0, 5, False) == SYSTEM_PROCESS_NAME


def test_update_list_pod_cache_stops_at_target():
    pod = Pod(
        name="p",
        namespace="ns",
        container_statuses=[
            ContainerStatus(container_id="docker://a", name="first"),
            ContainerStatus(container_id="docker://b", name="second"),
        ],
    )
    resolver = ContainerResolver(_Lister([pod]))
    resolver.update_list_pod_cache("docker://a", True)
    assert "a" in resolver.container_infos
    assert "b" not in resolver.container_infos
    resolver.update_list_pod_cache()
    assert resolver.container_infos["b"] == ContainerInfo("b", "second", "p", "ns")


def test_get_path_from_cgroup_id(tmp_path):
    scope = tmp_path / "kubepods.slice" / "cri-containerd-abc123.scope"
    scope.mkdir(parents=True)
    resolver = ContainerResolver(_Lister([]), cgroup_root=str(tmp_path))
    assert resolver.get_path_from_cgroup_id(os.stat(scope).st_ino) == str(scope)
    assert resolver.get_path_from_cgroup_id(-1) == "unknown"


def test_get_path_from_cgroup_id_missing_root(tmp_path):
    resolver = ContainerResolver(_Lister([]), cgroup_root=str(tmp_path / "missing"))
    with pytest.raises(CgroupError) as info:
        resolver.get_path_from_cgroup_id(1)
    assert info.value.fallback == "unknown"


def test_get_container_id_from_cgroup_id(tmp_path):
    scope = tmp_path / "kubepods.slice" / "cri-containerd-abc123.scope"
    scope.mkdir(parents=True)
    pod = Pod(
        name="db",
        namespace="prod",
        container_statuses=[ContainerStatus(container_id="containerd://abc123", name="pg")],
    )
    resolver = ContainerResolver(_Lister([pod]), cgroup_root=str(tmp_path))
    cgroup_id = os.stat(scope).st_ino
    assert resolver.get_container_id(cgroup_id, 0, True) == "abc123"
    assert resolver.get_pod_name(cgroup_id, 0, True) == "db"