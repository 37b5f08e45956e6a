"""
rankledger - Glicko-2 ratings for head-to-head competition

Keeps player ratings as an event-sourced ledger that can always be rebuilt
by replaying completed matches in chronological order.

Main components:
- glicko: Rating math (Glicko-2 update, inactivity decay, replay engine)
- ledger: Append-only rating event log, scoped per season
- recalculation: Full season rebuild and projection onto player rows
- rollback: Safe retraction of the most recent result for a pair of players
- seasons: Active/archived season management
- tasks: Background execution and single-flight locking
"""

__version__ = "1.0.0"
