from __future__ import annotations

import threading

from bucketgate.gateway.sampler import StatusSampler


def test_one_in_every_1001_status_checks_is_logged() -> None:
    sampler = StatusSampler(threshold=1000)

    results = [sampler.sample() for _ in range(3003)]

    logged = [index + 1 for index, allowed in enumerate(results) if allowed]
    assert logged == [1001, 2002, 3003]


def test_counter_never_exceeds_threshold() -> None:
    sampler = StatusSampler(threshold=5)
    for _ in range(50):
        sampler.sample()
        assert 0 <= sampler.count <= 5


def test_zero_threshold_logs_every_status_check() -> None:
    sampler = StatusSampler(threshold=0)
    assert all(sampler.sample() for _ in range(10))


def test_concurrent_sampling_keeps_exact_ratio() -> None:
    sampler = StatusSampler(threshold=9)
    allowed: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        local = [sampler.sample() for _ in range(250)]
        with lock:
            allowed.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(allowed) == 2000
    assert sum(allowed) == 200
