"""Tests for the algorithm registry fan-out."""

import logging
import threading

import numpy as np
import pytest

from tempofuse.analysis.registry import AlgorithmRegistry
from tests.conftest import FixedAlgorithm, make_window


@pytest.fixture
def window():
    return make_window(np.zeros(22050, dtype=np.float32))


def test_readings_follow_registry_order(window, context):
    with AlgorithmRegistry([FixedAlgorithm("b", 130), FixedAlgorithm("a", 120)]) as registry:
        readings = registry.evaluate(window, context)
    assert [r.algorithm_id for r in readings] == ["b", "a"]
    assert registry.ids == ["b", "a"]


def test_failing_algorithm_is_isolated(window, context, caplog):
    algorithms = [FixedAlgorithm("ok", 120), FixedAlgorithm("broken", error=RuntimeError("boom"))]
    with caplog.at_level(logging.WARNING):
        with AlgorithmRegistry(algorithms) as registry:
            readings = registry.evaluate(window, context)
    assert [r.algorithm_id for r in readings] == ["ok"]
    assert "broken" in caplog.text


def test_slow_algorithm_times_out(window, context):
    slow = FixedAlgorithm("slow", 120, delay=5.0)
    fast = FixedAlgorithm("fast", 121)
    cancel = threading.Event()
    with AlgorithmRegistry([slow, fast], timeout=0.2) as registry:
        readings = registry.evaluate(window, context, cancel)
    assert [r.algorithm_id for r in readings] == ["fast"]
    assert cancel.is_set()


def test_out_of_range_and_abstaining_readings_dropped(window, context):
    algorithms = [FixedAlgorithm("fast", 250), FixedAlgorithm("quiet", None), FixedAlgorithm("ok", 100)]
    with AlgorithmRegistry(algorithms) as registry:
        readings = registry.evaluate(window, context)
    assert [r.algorithm_id for r in readings] == ["ok"]


def test_every_algorithm_sees_the_same_window(window, context):
    algorithms = [FixedAlgorithm("a"), FixedAlgorithm("b"), FixedAlgorithm("c")]
    with AlgorithmRegistry(algorithms) as registry:
        registry.evaluate(window, context)
    assert all(a.windows == [window] for a in algorithms)


@pytest.mark.parametrize("algorithms, timeout", [
    ([], 5.0),
    ([FixedAlgorithm("a"), FixedAlgorithm("a")], 5.0),
    ([FixedAlgorithm("a")], 0.0),
])
def test_invalid_registry_rejected(algorithms, timeout):
    with pytest.raises(ValueError):
        AlgorithmRegistry(algorithms, timeout=timeout)


def test_lookup_by_id():
    a = FixedAlgorithm("a")
    with AlgorithmRegistry([a]) as registry:
        assert registry.by_id("a") is a
        assert len(registry) == 1
        with pytest.raises(KeyError):
            registry.by_id("missing")
