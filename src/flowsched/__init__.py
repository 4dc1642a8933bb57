"""
flowsched - Recurring schedule execution engine for chatflow pipelines.

Fires workflow executions on cron, interval and one-time cadences from a
fleet of polling worker processes, guarded by a per-schedule distributed
lease so a due schedule runs at most once per cycle.
"""

__version__ = "0.1.0"
