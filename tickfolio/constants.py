import os

# Project root: parent of the tickfolio/ package directory
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.ini")
ENV_PATH = os.path.join(PROJECT_ROOT, ".env")
PORTFOLIO_PATH = os.path.join(PROJECT_ROOT, "portfolio.toml")

PORTFOLIO_ENV = "TICKFOLIO_PORTFOLIO"
API_KEY_ENV = "CMC_API_KEY"

REFRESH_INTERVAL = 30     # seconds between ticks, fixed
INPUT_POLL_INTERVAL = 0.1  # upper bound on a single key poll
DEFAULT_FETCH_TIMEOUT = 10
MIN_FETCH_TIMEOUT = 1

USER_AGENT = "tickfolio/0.1"
CRYPTO_KEY_HEADER = "X-CMC_PRO_API_KEY"

DEFAULT_ENDPOINTS = {
    "stock": "https://example.com/stock/{symbol}",
    "commodity": "https://example.com/commodity/{symbol}",
    "crypto": "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest?symbol={symbol}",
}

QUIT_KEYS = ("q", "Q", "\x1b")

# Portfolio table columns: (header_label, justify, min_width)
PORTFOLIO_COLUMNS = [
    ("Type", "left", 9),
    ("Symbol", "left", 10),
    ("Qty", "right", 10),
    ("Price", "right", 12),
    ("Value", "right", 14),
]
