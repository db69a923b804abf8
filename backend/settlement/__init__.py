"""Payment settlement and reconciliation service for the grocery marketplace."""

__version__ = "1.0.0"
