import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from tickfolio.config import AssetDescriptor
from tickfolio.provider import FetchError

FAILED_PRICE = 0.0


@dataclass(frozen=True)
class PricedRow:
    descriptor: AssetDescriptor
    price: float

    @property
    def value(self) -> float:
        # Unrounded; rounding happens at render time
        return self.price * self.descriptor.quantity


@dataclass
class PortfolioSnapshot:
    """One tick's rows, index-aligned with the portfolio's descriptors."""
    rows: List[PricedRow] = field(default_factory=list)
    errors: Dict[int, str] = field(default_factory=dict)  # row index → fetch failure

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[PricedRow]:
        return iter(self.rows)

    def __getitem__(self, idx: int) -> PricedRow:
        return self.rows[idx]

    @property
    def failed(self) -> int:
        return len(self.errors)


def refresh_portfolio(provider, assets: Sequence[AssetDescriptor],
                      timeout: Optional[float] = None,
                      fetch: Optional[Callable[[AssetDescriptor], float]] = None) -> PortfolioSnapshot:
    """Price every asset concurrently and join the results in input order.

    Waits for all fetches, bounded by one deadline of `timeout` seconds
    (defaults to the provider's request timeout). A fetch that fails or is
    still running at the deadline yields a zero price for its row; siblings
    are never cancelled. Fetch threads are daemons, so a hung call can
    neither stall the caller nor keep the process alive at exit.
    """
    if not assets:
        return PortfolioSnapshot()

    fetch = fetch or provider.fetch_price
    if timeout is None:
        timeout = provider.timeout

    # One slot per descriptor, so the join is by index not arrival order
    results: List[Optional[float]] = [None] * len(assets)
    failures: List[Optional[Exception]] = [None] * len(assets)

    def _run(idx: int, asset: AssetDescriptor):
        try:
            results[idx] = fetch(asset)
        except Exception as e:
            failures[idx] = e

    threads = [threading.Thread(target=_run, args=(idx, asset), daemon=True, name=f"price-fetch-{idx}")
               for idx, asset in enumerate(assets)]
    for t in threads:
        t.start()

    deadline = time.monotonic() + timeout
    for t in threads:
        t.join(max(deadline - time.monotonic(), 0))

    prices = [FAILED_PRICE] * len(assets)
    errors: Dict[int, str] = {}
    for idx, t in enumerate(threads):
        symbol = assets[idx].symbol
        err = failures[idx]
        if t.is_alive():
            errors[idx] = f"{symbol}: timed out"
        elif isinstance(err, FetchError):
            errors[idx] = str(err)
        elif err is not None:
            # A custom fetch misbehaving is still just one failed row
            errors[idx] = f"{symbol}: {type(err).__name__}: {err}"
        else:
            prices[idx] = results[idx]

    rows = [PricedRow(descriptor=asset, price=price) for asset, price in zip(assets, prices)]
    return PortfolioSnapshot(rows=rows, errors=errors)
