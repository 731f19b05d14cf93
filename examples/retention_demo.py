#!/usr/bin/env python3
"""
Retention Demo - Retention Toolkit

Walks a small social graph through its lifecycle on an in-memory database:

1. Soft delete a post and restore it inside the restore window
2. Soft delete it again and let the window elapse
3. Run a sweep and inspect the report and the audit log

The clock is simulated so the 60 day window passes instantly.
"""

import asyncio
from datetime import datetime, timedelta

from retention_toolkit.audit_trail import AuditLogger, AuditQuery
from retention_toolkit.config import RetentionConfig
from retention_toolkit.database import dispose, setup_database
from retention_toolkit.entities import Comment, Like, Post, User
from retention_toolkit.soft_delete import (
    LifecycleManager,
    RestoreWindowExpiredError,
    RetentionSweeper,
)


class SimulatedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int) -> None:
        self.now += timedelta(days=days)


async def main() -> None:
    """Demonstrate soft delete, restore and the retention sweep."""
    print("🗂️  Retention Toolkit Demo\n")

    config = RetentionConfig(environment="development", database_url="sqlite://")
    clock = SimulatedClock(datetime(2024, 3, 1, 12, 0))
    session_factory = setup_database(config.database_url)

    audit = AuditLogger(session_factory, config=config, clock=clock)
    lifecycle = LifecycleManager(session_factory, audit, config=config, clock=clock)
    sweeper = RetentionSweeper(lifecycle)

    # 1. Seed data
    print("1️⃣ Creating Test Data:")
    with session_factory.begin() as session:
        alice = User(username="alice")
        bob = User(username="bob")
        session.add_all([alice, bob])
        session.flush()

        post = Post(id=42, author_id=alice.id, content="Selling my bike")
        session.add(post)
        session.flush()
        session.add(Like(user_id=bob.id, post_id=post.id))
        session.add(Comment(post_id=post.id, author_id=bob.id, content="Price?"))
    print("  ✓ Created users alice and bob, post 42 with one like and one comment")

    # 2. Soft delete and restore
    print("\n2️⃣ Soft Delete and Restore:")
    result = await lifecycle.soft_delete("post", 42, actor_id="mod-1", reason="spam")
    print(f"  ✓ Post 42 {result.outcome} by {result.record['deleted_by']}")

    clock.advance(days=10)
    result = await lifecycle.restore("post", 42, actor_id="mod-2", reason="appeal")
    print(f"  ✓ Post 42 {result.outcome} after 10 days")

    # 3. Let the window elapse
    print("\n3️⃣ Restore Window:")
    await lifecycle.soft_delete("post", 42, actor_id="mod-1", reason="spam again")
    clock.advance(days=61)
    try:
        await lifecycle.restore("post", 42, actor_id="mod-2")
    except RestoreWindowExpiredError as e:
        print(f"  ✗ {e}")

    for stats in lifecycle.get_retention_stats():
        if stats.total_deleted:
            print(
                f"  • {stats.entity_type}: {stats.ready_for_cleanup} of "
                f"{stats.total_deleted} ready for cleanup"
            )

    # 4. Sweep
    print("\n4️⃣ Retention Sweep:")
    report = await sweeper.manual_sweep("admin-1", reason="demo")
    for table, count in report.counts.items():
        if count:
            print(f"  ✓ {table}: {count} purged")
    print(f"  Total purged: {report.total_purged}")

    # The comment is a lifecycle dependent and blocks the post until it
    # is deleted itself
    if report.has_errors:
        for table, failures in report.errors.items():
            print(f"  ⚠ {table}: {len(failures)} failed, retried next sweep")

    # 5. Audit log
    print("\n5️⃣ Audit Log:")
    entries = await audit.query(AuditQuery(sort_desc=False))
    for entry in entries:
        print(f"  • {entry.to_log_format()}")

    integrity = await audit.verify_integrity()
    print(
        f"\n  ✓ {integrity['valid']} of {integrity['total_checked']} "
        "entries verified"
    )

    dispose(session_factory)


if __name__ == "__main__":
    asyncio.run(main())
