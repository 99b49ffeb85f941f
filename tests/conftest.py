import pytest

import db
import expenses
from models import LedgerEntry, Share, ShareStatus, SplitStrategy


@pytest.fixture
def db_file(tmp_path):
    path = str(tmp_path / "ledger.db")
    db.init_db(path)
    return path


@pytest.fixture
def people(db_file):
    return {
        "alice": expenses.register_participant("Alice", "alice@okbank", db_file=db_file),
        "bob": expenses.register_participant("Bob", "bob@okaxis", db_file=db_file),
        "carol": expenses.register_participant("Carol", db_file=db_file),
    }


class EventLog(list):
    def notify(self, event):
        self.append(event)

    @property
    def types(self):
        return [e.type for e in self]


@pytest.fixture
def event_log():
    return EventLog()


def make_entry(entry_id, payer, shares, group_id=None, strategy=SplitStrategy.CUSTOM):
    """shares: list of (participant, amount) or (participant, amount, status)."""
    built = [Share(s[0], s[1], status=s[2] if len(s) > 2 else ShareStatus.PENDING) for s in shares]
    return LedgerEntry(id=entry_id, payer=payer, total=sum(s.final_share for s in built), strategy=strategy,
                       shares=built, created_at=f"2025-01-{entry_id:02d}T10:00:00", group_id=group_id)
