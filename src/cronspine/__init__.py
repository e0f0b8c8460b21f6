"""cron-spine - distributed, idempotent cron job enqueuer.

Run the same schedule set on as many replicas as you like; every scheduled
instant is pushed onto its queue exactly once, instants missed during
downtime are recovered within a bounded window, and a Redis Sentinel
failover is just a few transient errors.
"""

__version__ = "0.1.0"
