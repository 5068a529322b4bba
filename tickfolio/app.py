import os
import sys
import time
import warnings
from typing import Callable, Optional

from tickfolio.config import (
    AssetKind, ConfigError, load_env, load_portfolio, parse_config, portfolio_path,
)
from tickfolio.constants import (
    API_KEY_ENV, REFRESH_INTERVAL, INPUT_POLL_INTERVAL, QUIT_KEYS,
)
from tickfolio.data import PortfolioSnapshot, refresh_portfolio
from tickfolio.provider import PriceProvider
from tickfolio.state import DashboardState, Phase
from tickfolio.ui import TerminalSession


class DashboardLoop:
    """Tick, refresh, draw, then poll keys until the next tick or a quit.

    Everything runs on the calling thread. A tick's refresh and draw finish
    before any key is looked at, and `teardown` runs exactly once however
    the loop ends.
    """

    def __init__(self, refresh: Callable[[], PortfolioSnapshot],
                 draw: Callable[[DashboardState], None],
                 poll_key: Callable[[float], Optional[str]],
                 teardown: Callable[[], None],
                 state: Optional[DashboardState] = None,
                 interval: float = REFRESH_INTERVAL,
                 poll_interval: float = INPUT_POLL_INTERVAL,
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time):
        self.state = state or DashboardState()
        self.interval = interval
        self.poll_interval = poll_interval
        self._refresh = refresh
        self._draw = draw
        self._poll_key = poll_key
        self._teardown = teardown
        self._clock = clock
        self._wall_clock = wall_clock
        self._torn_down = False

    @property
    def running(self) -> bool:
        return self.state.phase is Phase.RUNNING

    def run(self):
        try:
            next_tick = self._clock()
            while self.running:
                if self._clock() >= next_tick:
                    self._tick()
                    next_tick += self.interval
                    finished = self._clock()
                    if next_tick <= finished:
                        # Fell behind: resume the cadence after this tick, no burst
                        next_tick = finished + self.interval

                wait = min(self.poll_interval, max(next_tick - self._clock(), 0.0))
                key = self._poll_key(wait)
                if key in QUIT_KEYS:
                    self.request_quit()
        except KeyboardInterrupt:
            self.request_quit()
        finally:
            self._shutdown()

    def _tick(self):
        snapshot = self._refresh()
        state = self.state
        state.snapshot = snapshot
        state.updated = self._wall_clock()
        state.ticks += 1
        # First failure in portfolio order
        state.status_error = snapshot.errors[min(snapshot.errors)] if snapshot.errors else ""
        if self.running:
            self._draw(state)

    def request_quit(self):
        self.state.phase = Phase.SHUTTING_DOWN
        self.state.quit_flag = True

    def _shutdown(self):
        self.state.phase = Phase.SHUTTING_DOWN
        if self._torn_down:
            return
        self._torn_down = True
        self._teardown()


def main():
    load_env()

    try:
        config = parse_config()
        path = portfolio_path()
        assets = load_portfolio(path)
    except ConfigError as e:
        print(f"[error] {e}")
        sys.exit(1)

    if not assets:
        print(f"[warning] {os.path.basename(path)} has no assets, showing an empty portfolio")

    # Crypto lookups need an API key unless the asset brings its own endpoint
    api_key = os.environ.get(API_KEY_ENV, "")
    keyed = [a.symbol for a in assets if a.kind is AssetKind.CRYPTO and not a.override_endpoint]
    if keyed and not api_key:
        print(f"[error] {API_KEY_ENV} environment variable not set (needed for {', '.join(keyed)}).")
        print(f"  export {API_KEY_ENV}='your_key'")
        sys.exit(1)

    print(f"[tickfolio] Refresh: {REFRESH_INTERVAL}s, fetch timeout {config.fetch_timeout}s")
    print(f"[tickfolio] Watching {len(assets)} assets from {os.path.basename(path)}")

    # Suppress urllib3 SSL warning for LibreSSL
    warnings.filterwarnings("ignore", message=".*urllib3.*OpenSSL.*")

    provider = PriceProvider(api_key=api_key, timeout=config.fetch_timeout, endpoints=config.endpoints)
    state = DashboardState(portfolio_name=os.path.basename(path))

    try:
        with TerminalSession() as session:
            session.open(state)
            loop = DashboardLoop(
                refresh=lambda: refresh_portfolio(provider, assets),
                draw=session.draw,
                poll_key=session.poll_key,
                teardown=session.close,
                state=state,
            )
            loop.run()
    finally:
        provider.close()

    print("[tickfolio] Goodbye.")
