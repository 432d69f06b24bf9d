"""Resource quantities in the Kubernetes notation ("100m", "750Mi", "2", "1e3")."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_UP, Decimal

BINARY_SI = "BinarySI"
DECIMAL_SI = "DecimalSI"
DECIMAL_EXPONENT = "DecimalExponent"

_FORMATS = frozenset({BINARY_SI, DECIMAL_SI, DECIMAL_EXPONENT})

_BINARY_SUFFIXES = {"Ki": 10, "Mi": 20, "Gi": 30, "Ti": 40, "Pi": 50, "Ei": 60}
_BINARY_ORDER = ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei")
_DECIMAL_SUFFIXES = {
    "n": -9,
    "u": -6,
    "m": -3,
    "": 0,
    "k": 3,
    "M": 6,
    "G": 9,
    "T": 12,
    "P": 15,
    "E": 18,
}
_SUFFIX_FOR_EXPONENT = {exponent: suffix for suffix, exponent in _DECIMAL_SUFFIXES.items()}

_NUMBER_RE = re.compile(r"([+-]?(?:\d+(?:\.\d*)?|\.\d+))(.*)")
_EXPONENT_RE = re.compile(r"[eE]([+-]?\d+)")


@dataclass(frozen=True, order=True)
class Quantity:
    """A fixed-point amount with the notation it is written in.

    Equality and ordering compare amounts only.
    """

    amount: Decimal = Decimal(0)
    format: str = field(default=DECIMAL_SI, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            raw = self.amount
            amount = Decimal(repr(raw)) if isinstance(raw, float) else Decimal(raw)
            object.__setattr__(self, "amount", amount)
        if self.format not in _FORMATS:
            raise ValueError(f"unknown quantity format {self.format!r}")

    @classmethod
    def parse(cls, text: str) -> Quantity:
        """Parse a quantity string; raise ValueError if it is malformed."""
        match = _NUMBER_RE.fullmatch(text)
        if match is None:
            raise ValueError(f"quantities must be a number with an optional suffix: {text!r}")
        number = Decimal(match.group(1))
        suffix = match.group(2)
        if suffix in _BINARY_SUFFIXES:
            return cls(number * (1 << _BINARY_SUFFIXES[suffix]), BINARY_SI)
        if suffix in _DECIMAL_SUFFIXES:
            return cls(number.scaleb(_DECIMAL_SUFFIXES[suffix]), DECIMAL_SI)
        exponent = _EXPONENT_RE.fullmatch(suffix)
        if exponent is not None:
            return cls(number.scaleb(int(exponent.group(1))), DECIMAL_EXPONENT)
        raise ValueError(f"unable to parse quantity's suffix: {text!r}")

    def value(self) -> int:
        """The amount rounded up, away from zero, to a whole number."""
        return int(self.amount.to_integral_value(rounding=ROUND_UP))

    def milli_value(self) -> int:
        """The amount in thousandths, rounded up away from zero."""
        return int(self.amount.scaleb(3).to_integral_value(rounding=ROUND_UP))

    def __add__(self, other: Quantity) -> Quantity:
        return Quantity(self.amount + other.amount, self.format)

    def __sub__(self, other: Quantity) -> Quantity:
        return Quantity(self.amount - other.amount, self.format)

    def __str__(self) -> str:
        amount = self.amount
        if (
            self.format == BINARY_SI
            and amount == amount.to_integral_value()
            and abs(amount) >= 1024
        ):
            number = int(amount)
            power = 0
            while power < len(_BINARY_ORDER) - 1 and number % 1024 == 0:
                number //= 1024
                power += 1
            return f"{number}{_BINARY_ORDER[power]}"

        nanos = int(amount.scaleb(9).to_integral_value(rounding=ROUND_UP))
        if nanos == 0:
            return "0"
        exponent = -9
        while exponent < 18 and nanos % 1000 == 0:
            nanos //= 1000
            exponent += 3
        if self.format == DECIMAL_EXPONENT:
            suffix = f"e{exponent}" if exponent else ""
        else:
            suffix = _SUFFIX_FOR_EXPONENT[exponent]
        return f"{nanos}{suffix}"