"""Pytest configuration for the Retention Toolkit."""

from datetime import datetime, timedelta

import pytest

from retention_toolkit.audit_trail import AuditLogger
from retention_toolkit.config import RetentionConfig, set_config
from retention_toolkit.database import dispose, setup_database
from retention_toolkit.entities import (
    Comment,
    Follow,
    Like,
    Listing,
    ListingDetails,
    Media,
    Notification,
    Post,
    Profile,
    Save,
    User,
)
from retention_toolkit.soft_delete import LifecycleManager, RetentionSweeper


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line("markers", "lifecycle: soft delete and restore tests")
    config.addinivalue_line("markers", "sweep: retention sweep tests")


class FakeClock:
    """Controllable naive UTC clock."""

    def __init__(self, start=datetime(2024, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, days=0, hours=0, minutes=0, seconds=0):
        self.now += timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    """Test configuration installed as the global config."""
    cfg = RetentionConfig(
        application_name="Retention Tests",
        environment="test",
        database_url="sqlite://",
    )
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture
def session_factory(config):
    """Session factory on a fresh in-memory SQLite database."""
    factory = setup_database(config.database_url)
    yield factory
    dispose(factory)


@pytest.fixture
def audit_logger(session_factory, config, clock):
    return AuditLogger(session_factory, config=config, clock=clock)


@pytest.fixture
def lifecycle(session_factory, audit_logger, config, clock):
    return LifecycleManager(session_factory, audit_logger, config=config, clock=clock)


@pytest.fixture
def sweeper(lifecycle, config):
    return RetentionSweeper(lifecycle, config=config)


@pytest.fixture
def social_graph(session_factory):
    """
    Two users, a post with id 42 and a listing, with auxiliary rows.

    Post 42 has likes, a save and no comments, so it can be purged on its own.
    Post 43 has a comment with a like of its own.
    """
    with session_factory.begin() as session:
        alice = User(username="alice", email="alice@example.com", name="Alice")
        bob = User(username="bob", email="bob@example.com", name="Bob")
        session.add_all([alice, bob])
        session.flush()

        session.add(Profile(user_id=alice.id, bio="Seller of bikes"))
        post = Post(id=42, author_id=alice.id, content="Selling my old bike")
        other_post = Post(id=43, author_id=bob.id, content="Looking for a bike")
        listing = Listing(author_id=alice.id, title="Bike", price_cents=15000)
        session.add_all([post, other_post, listing])
        session.flush()

        comment = Comment(post_id=43, author_id=alice.id, content="I have one")
        session.add(comment)
        session.flush()

        session.add_all(
            [
                Like(user_id=bob.id, post_id=42),
                Like(user_id=alice.id, post_id=42),
                Like(user_id=bob.id, comment_id=comment.id),
                Save(user_id=bob.id, post_id=42),
                Follow(follower_id=bob.id, following_id=alice.id),
                ListingDetails(listing_id=listing.id, attribute="color", value="red"),
                ListingDetails(listing_id=listing.id, attribute="size", value="M"),
                Media(listing_id=listing.id, url="https://cdn.example.com/bike.jpg"),
                Notification(
                    recipient_id=bob.id,
                    sender_id=alice.id,
                    comment_id=comment.id,
                    kind="comment",
                    body="alice commented on your post",
                ),
            ]
        )

        ids = {
            "alice": alice.id,
            "bob": bob.id,
            "post": post.id,
            "other_post": other_post.id,
            "listing": listing.id,
            "comment": comment.id,
        }

    return ids
