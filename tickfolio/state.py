from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from tickfolio.data import PortfolioSnapshot


class Phase(Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class DashboardState:
    snapshot: PortfolioSnapshot = field(default_factory=PortfolioSnapshot)
    portfolio_name: str = ""

    updated: Optional[float] = None  # wall-clock time of the last completed tick
    ticks: int = 0
    status_error: str = ""           # first fetch failure of the last tick, shown in the header

    phase: Phase = Phase.RUNNING
    quit_flag: bool = False
