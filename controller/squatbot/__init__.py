"""SquatBot: squat to unlock a drink."""

__version__ = "0.1.0"
