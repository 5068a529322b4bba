import os
import select
import sys
import time
from datetime import datetime
from typing import List, Optional, Tuple

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tickfolio.constants import PORTFOLIO_COLUMNS
from tickfolio.data import PortfolioSnapshot
from tickfolio.formatting import fmt_kind, fmt_quantity, fmt_money
from tickfolio.state import DashboardState


def portfolio_rows(snapshot: PortfolioSnapshot) -> List[Tuple[str, str, str, str, str]]:
    """Plain cell text per row: one row per snapshot entry, in snapshot order."""
    return [
        (
            fmt_kind(row.descriptor.kind),
            row.descriptor.symbol,
            fmt_quantity(row.descriptor.quantity),
            fmt_money(row.price),
            fmt_money(row.value),
        )
        for row in snapshot
    ]


def build_portfolio_table(snapshot: PortfolioSnapshot) -> Table:
    table = Table(expand=True, box=None, padding=(0, 1))
    for label, justify, min_width in PORTFOLIO_COLUMNS:
        style = "bold white" if justify == "left" else None
        table.add_column(label, justify=justify, min_width=min_width, style=style)

    for kind, symbol, qty, price, value in portfolio_rows(snapshot):
        table.add_row(kind, symbol, qty, Text(price, style="cyan"), Text(value, style="bold cyan"))
    return table


def build_portfolio_panel(state: DashboardState) -> Panel:
    table = build_portfolio_table(state.snapshot)
    subtitle = f"{len(state.snapshot)} assets" if state.ticks else "loading..."
    return Panel(table, title="[bold grey70]PORTFOLIO[/bold grey70]", subtitle=f"[grey46]{subtitle}[/grey46]",
                 subtitle_align="right", border_style="grey70")


def make_header(state: DashboardState) -> Panel:
    left = Text()
    if state.portfolio_name:
        left.append(state.portfolio_name, style="bold cyan")
        left.append("  ")
    snap = state.snapshot
    if snap.failed:
        left.append(f"⚠ {snap.failed} of {len(snap)} prices unavailable", style="bold yellow")
        if state.status_error:
            left.append(f"  {state.status_error[:60]}", style="yellow")

    updated = datetime.fromtimestamp(state.updated).strftime("%H:%M:%S") if state.updated else "--:--:--"
    right = Text(f"updated {updated}  [q] Quit", style="dim")

    header_table = Table(expand=True, box=None, show_header=False, padding=0)
    header_table.add_column("left")
    header_table.add_column("right", justify="right")
    header_table.add_row(left, right)

    return Panel(header_table, title="[bold grey70]TICKFOLIO[/bold grey70]", border_style="grey70")


def build_layout(state: DashboardState) -> Layout:
    layout = Layout()

    # Panel border = 2 rows, plus the table header row
    rows = max(len(state.snapshot), 1) + 1

    layout.split_column(
        Layout(name="header", size=3),
        Layout(name="portfolio", size=rows + 2),
        Layout(name="rest"),
    )
    layout["header"].update(make_header(state))
    layout["portfolio"].update(build_portfolio_panel(state))
    layout["rest"].update(Text(""))
    return layout


class KeyPoller:
    """Non-blocking single-key reads from stdin in cbreak mode."""

    ESC = "\x1b"

    def __init__(self, stream=None):
        self._stream = stream or sys.stdin
        self._fd: Optional[int] = None
        self._old_settings = None

    @property
    def interactive(self) -> bool:
        return self._fd is not None

    def start(self):
        try:
            import termios
            import tty
        except ImportError:
            return  # no termios (e.g. Windows): polls just wait, Ctrl+C still quits

        try:
            fd = self._stream.fileno()
            if not os.isatty(fd):
                return
            self._old_settings = termios.tcgetattr(fd)
            tty.setcbreak(fd)
        except (OSError, ValueError, termios.error):
            self._old_settings = None
            return
        self._fd = fd

    def poll(self, timeout: float) -> Optional[str]:
        """Wait at most `timeout` seconds for one key. Returns None if there was none."""
        if self._fd is None:
            time.sleep(max(timeout, 0))
            return None

        ready, _, _ = select.select([self._fd], [], [], max(timeout, 0))
        if not ready:
            return None
        ch = os.read(self._fd, 1).decode(errors="ignore")
        if ch == self.ESC and self._pending(0.01):
            # Escape sequence (arrow keys etc.), not a lone Escape
            while self._pending(0):
                os.read(self._fd, 64)
            return None
        return ch or None

    def _pending(self, timeout: float) -> bool:
        ready, _, _ = select.select([self._fd], [], [], timeout)
        return bool(ready)

    def close(self):
        if self._fd is None or self._old_settings is None:
            self._fd = None
            return
        import termios

        fd, old = self._fd, self._old_settings
        self._fd = None
        self._old_settings = None
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


class TerminalSession:
    """Full-screen drawing surface plus key input; restores the terminal once."""

    def __init__(self, console: Optional[Console] = None, poller: Optional[KeyPoller] = None):
        self.console = console or Console()
        self.poller = poller or KeyPoller()
        self._live: Optional[Live] = None
        self._closed = False

    def open(self, state: DashboardState):
        self.poller.start()
        self._live = Live(build_layout(state), console=self.console, screen=True, auto_refresh=False)
        try:
            self._live.start()
        except Exception:
            self.close()
            raise

    def draw(self, state: DashboardState):
        if self._closed or self._live is None:
            return
        self._live.update(build_layout(state), refresh=True)

    def poll_key(self, timeout: float) -> Optional[str]:
        return self.poller.poll(timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            if self._live is not None:
                self._live.stop()
        finally:
            self.poller.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
