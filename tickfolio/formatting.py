from decimal import Decimal

from tickfolio.config import AssetKind


def fmt_money(val: float) -> str:
    # -0.0 (zero price, short quantity) renders as 0.00
    return f"{val + 0.0:.2f}"


def fmt_quantity(val: float) -> str:
    """Quantity as given, in plain decimal: 10.0 → '10', 1e-07 → '0.0000001'."""
    # repr gives the shortest round-tripping digits; Decimal drops the exponent
    s = format(Decimal(repr(float(val) + 0.0)), "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s


def fmt_kind(kind: AssetKind) -> str:
    return kind.label
