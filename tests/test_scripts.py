# tests/test_scripts.py
"""Tests for operational scripts and token helpers."""

from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from zone_relay.core.security import create_access_token, decode_user_id
from zone_relay.db.time import utcnow
from zone_relay.models import Notification
from zone_relay.scripts import clean_notifications, migrate
from zone_relay.services.notifications import NotificationStore


def test_clean_notifications_purges_expired(engine, db_session, bob, mocker) -> None:
    """Test that the cleanup script removes only expired notifications."""
    store = NotificationStore(db_session)
    stale = store.create(bob.id, "announcement", content="stale")
    stale.created_at = utcnow() - timedelta(days=120)
    db_session.commit()
    fresh = store.create(bob.id, "announcement", content="fresh")

    mocker.patch.object(clean_notifications, "SessionLocal", sessionmaker(bind=engine))

    removed = clean_notifications.run()

    assert removed == 1
    remaining = db_session.scalars(select(Notification.id)).all()
    assert remaining == [fresh.id]


def test_migrate_targets_head(mocker) -> None:
    upgrade = mocker.patch.object(migrate.command, "upgrade")

    migrate.run_upgrade_head()

    cfg, revision = upgrade.call_args.args
    assert revision == "head"
    assert cfg.get_main_option("script_location").endswith("migrations")
    assert cfg.get_main_option("sqlalchemy.url") == migrate.settings.database_url_sync


def test_token_round_trip() -> None:
    assert decode_user_id(create_access_token(42)) == 42


def test_token_rejections() -> None:
    assert decode_user_id("garbage") is None
    assert decode_user_id(create_access_token(1, {"sub": "not-a-number"})) is None
