import os
import random
import subprocess
import sys
import textwrap
import threading
import time
from typing import Dict

import pytest

from tickfolio.config import AssetDescriptor, AssetKind
from tickfolio.data import PortfolioSnapshot, PricedRow, refresh_portfolio
from tickfolio.provider import FetchError

ABC = AssetDescriptor(AssetKind.STOCK, "ABC", 10.0)
XYZ = AssetDescriptor(AssetKind.CRYPTO, "XYZ", 2.0)


class FakeProvider:
    """Prices by symbol; a missing symbol fails like a bad lookup."""

    def __init__(self, prices: Dict[str, float], timeout: float = 2.0) -> None:
        self.prices = prices
        self.timeout = timeout
        self.seen = []
        self._lock = threading.Lock()

    def fetch_price(self, asset: AssetDescriptor) -> float:
        with self._lock:
            self.seen.append(asset)
        if asset.symbol not in self.prices:
            raise FetchError(f"{asset.symbol}: HTTP 404")
        return self.prices[asset.symbol]


def test_example_scenario() -> None:
    snapshot = refresh_portfolio(FakeProvider({"ABC": 5.0, "XYZ": 100.0}), [ABC, XYZ])

    assert snapshot.rows == [PricedRow(ABC, 5.0), PricedRow(XYZ, 100.0)]
    assert [row.value for row in snapshot] == [50.0, 200.0]
    assert snapshot.errors == {}


def test_failed_fetch_degrades_to_zero() -> None:
    snapshot = refresh_portfolio(FakeProvider({"ABC": 5.0}), [ABC, XYZ])

    assert snapshot.rows == [PricedRow(ABC, 5.0), PricedRow(XYZ, 0.0)]
    assert snapshot[1].value == 0.0
    assert snapshot.failed == 1
    assert snapshot.errors == {1: "XYZ: HTTP 404"}


def test_all_failed_still_full_length() -> None:
    assets = [ABC, XYZ, ABC]
    snapshot = refresh_portfolio(FakeProvider({}), assets)

    assert len(snapshot) == 3
    assert [row.price for row in snapshot] == [0.0, 0.0, 0.0]
    assert [row.descriptor for row in snapshot] == assets


def test_empty_portfolio() -> None:
    snapshot = refresh_portfolio(FakeProvider({}), [])

    assert len(snapshot) == 0
    assert snapshot.errors == {}


def test_order_follows_input_not_completion() -> None:
    assets = [AssetDescriptor(AssetKind.STOCK, f"S{i}", 1.0) for i in range(12)]
    rng = random.Random(7)
    delays = {a.symbol: rng.uniform(0, 0.05) for a in assets}
    # The first asset finishes last
    delays["S0"] = 0.1

    def fetch(asset: AssetDescriptor) -> float:
        time.sleep(delays[asset.symbol])
        return float(asset.symbol[1:])

    snapshot = refresh_portfolio(FakeProvider({}), assets, fetch=fetch, timeout=5)

    assert [row.descriptor.symbol for row in snapshot] == [a.symbol for a in assets]
    assert [row.price for row in snapshot] == [float(i) for i in range(12)]


def test_fetches_run_concurrently() -> None:
    assets = [AssetDescriptor(AssetKind.STOCK, f"S{i}", 1.0) for i in range(4)]
    barrier = threading.Barrier(len(assets), timeout=2)

    def fetch(asset: AssetDescriptor) -> float:
        # Only passes if every fetch is in flight at the same time
        barrier.wait()
        return 1.0

    snapshot = refresh_portfolio(FakeProvider({}), assets, fetch=fetch, timeout=5)

    assert [row.price for row in snapshot] == [1.0] * 4


def test_hung_fetch_times_out_without_stalling() -> None:
    release = threading.Event()

    def fetch(asset: AssetDescriptor) -> float:
        if asset.symbol == "XYZ":
            release.wait(10)
            return 100.0
        return 5.0

    started = time.monotonic()
    try:
        snapshot = refresh_portfolio(FakeProvider({}), [ABC, XYZ], fetch=fetch, timeout=0.2)
        elapsed = time.monotonic() - started
    finally:
        release.set()

    assert elapsed < 2
    assert snapshot.rows == [PricedRow(ABC, 5.0), PricedRow(XYZ, 0.0)]
    assert snapshot.errors == {1: "XYZ: timed out"}


def test_unexpected_exception_is_one_failed_row() -> None:
    def fetch(asset: AssetDescriptor) -> float:
        if asset.symbol == "ABC":
            raise RuntimeError("boom")
        return 100.0

    snapshot = refresh_portfolio(FakeProvider({}), [ABC, XYZ], fetch=fetch)

    assert [row.price for row in snapshot] == [0.0, 100.0]
    assert "boom" in snapshot.errors[0]


def test_timeout_defaults_to_provider_timeout() -> None:
    release = threading.Event()

    def fetch(asset: AssetDescriptor) -> float:
        release.wait(10)
        return 1.0

    started = time.monotonic()
    try:
        snapshot = refresh_portfolio(FakeProvider({}, timeout=0.2), [ABC, XYZ], fetch=fetch)
        elapsed = time.monotonic() - started
    finally:
        release.set()

    # one shared deadline, not one per asset
    assert 0.2 <= elapsed < 1.5
    assert snapshot.errors == {0: "ABC: timed out", 1: "XYZ: timed out"}


HUNG_FETCH_SCRIPT = textwrap.dedent("""
    import time

    from tickfolio.config import AssetDescriptor, AssetKind
    from tickfolio.data import refresh_portfolio

    def fetch(asset):
        time.sleep(30)
        return 1.0

    asset = AssetDescriptor(AssetKind.STOCK, "ABC", 1.0)
    snapshot = refresh_portfolio(None, [asset], timeout=0.2, fetch=fetch)
    print(snapshot.errors[0])
""")


def test_hung_fetch_does_not_delay_process_exit() -> None:
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    env = dict(os.environ, PYTHONPATH=root)

    started = time.monotonic()
    proc = subprocess.run([sys.executable, "-c", HUNG_FETCH_SCRIPT], cwd=root, env=env,
                          capture_output=True, text=True, timeout=20)
    elapsed = time.monotonic() - started

    assert proc.returncode == 0, proc.stderr
    assert proc.stdout.strip() == "ABC: timed out"
    assert elapsed < 10


def test_refresh_is_idempotent() -> None:
    provider = FakeProvider({"ABC": 5.0})

    first = refresh_portfolio(provider, [ABC, XYZ])
    second = refresh_portfolio(provider, [ABC, XYZ])

    assert first == second


def test_descriptors_shared_not_copied() -> None:
    provider = FakeProvider({"ABC": 5.0, "XYZ": 1.0})
    assets = [ABC, XYZ]

    snapshot = refresh_portfolio(provider, assets)

    assert snapshot[0].descriptor is ABC
    assert sorted(a.symbol for a in provider.seen) == ["ABC", "XYZ"]
    assert assets == [ABC, XYZ]


def test_value_is_not_rounded() -> None:
    row = PricedRow(AssetDescriptor(AssetKind.STOCK, "ABC", 3.0), 0.335)

    assert row.value == pytest.approx(1.005)
    assert PortfolioSnapshot(rows=[row]).failed == 0
