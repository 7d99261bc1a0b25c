"""
Benchline — Roster & Waitlist Engine for League Activities
============================================================
Decides, for capacity-limited events and tournaments, who holds a
confirmed slot, who waits on the waitlist, and in what order waiting
players are promoted when a slot frees up.

Package layout::

    benchline/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Payment window, retry policy, UTC clock
    ├── errors.py          # Domain error hierarchy (mapped to HTTP codes)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, sessions, row locks, retries
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── capacity.py    # "Is there room now?"
    │   ├── roles.py       # Profile position → registration role
    │   ├── teams.py       # Black/White balancing
    │   ├── ranking.py     # Two-tier waitlist order
    │   └── notifications.py # PendingNotification envelope + templates
    ├── services/
    │   ├── registration_service.py  # Register / cancel / remove
    │   ├── promotion_service.py     # Promotion engine + renumbering
    │   ├── payment_service.py       # Mark / verify payments
    │   ├── roster_service.py        # Waitlist reads, reorder, teams
    │   ├── deadline_sweep.py        # Expired payment deadline sweep
    │   ├── notification_service.py  # Post-commit dispatcher (Expo push)
    │   ├── audit.py                 # admin_log helpers
    │   └── authorization.py         # Who may manage an activity
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, config, JWT user
        └── routes/        # Activity registration endpoints
"""

__version__ = "0.1.0"
