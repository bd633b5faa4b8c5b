from __future__ import annotations

import math
import re
from decimal import Decimal
from typing import Any

# Balances within one cent of zero count as settled.
EPSILON = 0.01

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_amount(value: Any) -> float:
    """Lenient amount parsing: anything that is not a finite number becomes 0.

    Strings are read up to the first character that cannot belong to a number,
    so ``"12.50 USD"`` gives ``12.5`` and ``"abc"`` gives ``0``.
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float, Decimal)):
        result = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if not match:
            return 0.0
        result = float(match.group(1))
    else:
        return 0.0

    if not math.isfinite(result):
        return 0.0
    return result


def is_debt(balance: float) -> bool:
    return balance < -EPSILON


def is_credit(balance: float) -> bool:
    return balance > EPSILON


def format_amount(amount: float, currency: str = "USD") -> str:
    return f"{amount:.2f} {currency}"
