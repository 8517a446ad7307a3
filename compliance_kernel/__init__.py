"""
Compliance Kernel

Persistence, typed errors, structured logging, and domain DTOs for the
compliance deadline and penalty engine:
- Jurisdiction hierarchy and holiday calendars
- Versioned deadline formulas and penalty rules
- Materialized compliance calendar entries with optimistic concurrency
- Domain event outbox
"""

__version__ = "0.1.0"
