import pytest

from kepler.attacher import (
    CACHE_MISS_LABEL,
    CPU_CYCLE_LABEL,
    CPU_INSTRUCTION_LABEL,
    CPU_REF_CYCLE_LABEL,
    CPU_TIME,
    IRQ_BLOCK_LABEL,
    IRQ_NET_RX_LABEL,
    IRQ_NET_TX_LABEL,
    AttachError,
    BpfModuleTables,
    PerfCounter,
    Table,
    attach_bpf_assets,
    default_counters,
    detach_bpf_modules,
    enabled_bpf_counters,
    enabled_hw_counters,
)


def test_table_round_trip():
    table = Table()
    table.update(b"\x01", b"abc")
    table.update(b"\x02", b"def")
    table.update(b"\x01", b"xyz")
    assert dict(table.iter()) == {b"\x01": b"xyz", b"\x02": b"def"}
    assert len(table) == 2


def test_table_delete_all():
    table = Table()
    table.update(b"k", b"v")
    table.delete_all()
    assert list(table.iter()) == []


def test_table_iter_is_snapshot():
    table = Table()
    table.update(b"a", b"1")
    for key, _ in table.iter():
        table.update(key + b"x", b"2")
    assert len(table) == 2


def test_attach_raises():
    with pytest.raises(AttachError):
        attach_bpf_assets()


def test_detach_clears_tables():
    modules = BpfModuleTables()
    modules.table.update(b"k", b"v")
    modules.cpu_freq_table.update(b"k", b"v")
    detach_bpf_modules(modules)
    assert len(modules.table) == 0
    assert len(modules.cpu_freq_table) == 0


def test_default_counters_names():
    assert set(default_counters()) == {
        CPU_CYCLE_LABEL,
        CPU_REF_CYCLE_LABEL,
        CPU_INSTRUCTION_LABEL,
        CACHE_MISS_LABEL,
    }
    assert all(c.enabled for c in default_counters().values())


def test_enabled_hw_counters_not_exposed():
    assert enabled_hw_counters(default_counters(), False) == []


def test_enabled_hw_counters_filters_disabled():
    counters = default_counters()
    counters[CACHE_MISS_LABEL].enabled = False
    result = enabled_hw_counters(counters, True)
    assert CACHE_MISS_LABEL not in result
    assert sorted(result) == sorted(
        [CPU_CYCLE_LABEL, CPU_REF_CYCLE_LABEL, CPU_INSTRUCTION_LABEL]
    )


def test_enabled_hw_counters_custom():
    counters = {"a": PerfCounter(0, 0, True), "b": PerfCounter(0, 1, False)}
    assert enabled_hw_counters(counters, True) == ["a"]


def test_enabled_bpf_counters_without_irq():
    assert enabled_bpf_counters(False) == [CPU_TIME]


def test_enabled_bpf_counters_with_irq():
    assert enabled_bpf_counters(True) == [
        CPU_TIME,
        IRQ_NET_TX_LABEL,
        IRQ_NET_RX_LABEL,
        IRQ_BLOCK_LABEL,
    ]