"""
compliance_batch -- Re-evaluation and generation passes.

Runs calendar generation and lifecycle re-evaluation over every client as
a pass: items partitioned by client, a worker pool with one session per
worker, a SAVEPOINT per item, cooperative cancellation, whole-pass retry
on infrastructure failure, and an in-process polling scheduler.

Architecture:
    compliance_batch/ is a top-level package.  Nothing in kernel/,
    engines/, or services/ imports from compliance_batch.

Invariants:
    - One failed item never aborts a pass (SAVEPOINT per item).
    - A partition commits once, after its last item.
    - All timestamps come from the injected Clock.
    - Schedule evaluation is pure.
    - Stop and cancel signals are honoured between items.
"""
