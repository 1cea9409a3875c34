from datetime import datetime, timedelta, timezone

import pytest

from ledger.config import Settings
from ledger.service import LedgerService
from ledger.storage import InMemoryStorage
from wagers.membership import InMemoryChatMembership
from wagers.service import WagerService

CHAT_ID = "chat-squad"
START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock so deadlines and cooldowns need no sleeping."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def ledger(storage, settings, clock):
    return LedgerService(storage=storage, settings=settings, clock=clock)


@pytest.fixture
def membership():
    return InMemoryChatMembership()


@pytest.fixture
def wagers(ledger, membership):
    return WagerService(ledger=ledger, membership=membership)


@pytest.fixture
def members(ledger, membership):
    """Registers users in CHAT_ID; returns a function taking user ids."""

    def _add(*user_ids: str, chat_id: str = CHAT_ID) -> None:
        for user_id in user_ids:
            ledger.register_user(user_id, display_name=user_id.title())
            membership.add_member(chat_id, user_id)

    return _add
