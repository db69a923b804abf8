from settlement.utils.money import to_minor_units, from_minor_units, format_naira
from settlement.utils.effects import run_nonfatal, NonFatalResult

__all__ = [
    "to_minor_units", "from_minor_units", "format_naira",
    "run_nonfatal", "NonFatalResult",
]
