"""ledgermatch: bank reconciliation with autonomous resolution and adaptive learning."""

__version__ = "1.0.0"
