"""
ClearQuest investigative decision engine.

Tracks disclosed incidents through multi-turn probing, decides when to
clarify or stop, and keeps the interview transcript as an append-only record.
"""

__version__ = "0.1.0"
