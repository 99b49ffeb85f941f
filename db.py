import logging
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from config import get_settings
from errors import ConflictError, NotFoundError
from models import (
    Category, ExpenseType, Group, LedgerEntry, Participant, Payment, PaymentMethod,
    PaymentStatus, Share, ShareKey, ShareStatus, SplitStrategy,
)

logger = logging.getLogger(__name__)

SCHEMA = [
    '''CREATE TABLE IF NOT EXISTS participants (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT UNIQUE NOT NULL,
        upi_id TEXT
    )''',
    '''CREATE TABLE IF NOT EXISTS groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    )''',
    '''CREATE TABLE IF NOT EXISTS expenses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        group_id INTEGER,
        description TEXT NOT NULL,
        category TEXT NOT NULL,
        notes TEXT NOT NULL DEFAULT '',
        currency TEXT NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        payer_id INTEGER NOT NULL,
        split_type TEXT NOT NULL,
        expense_type TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY(payer_id) REFERENCES participants(id),
        FOREIGN KEY(group_id) REFERENCES groups(id)
    )''',
    '''CREATE TABLE IF NOT EXISTS shares (
        expense_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        participant_id INTEGER NOT NULL,
        percentage TEXT,
        declared_amount INTEGER,
        final_share INTEGER NOT NULL CHECK (final_share >= 0),
        status TEXT NOT NULL,
        PRIMARY KEY (expense_id, participant_id),
        FOREIGN KEY(expense_id) REFERENCES expenses(id) ON DELETE CASCADE,
        FOREIGN KEY(participant_id) REFERENCES participants(id)
    )''',
    '''CREATE TABLE IF NOT EXISTS payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        payer_id INTEGER NOT NULL,
        payee_id INTEGER NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        method TEXT NOT NULL,
        status TEXT NOT NULL,
        source TEXT NOT NULL,
        transaction_ref TEXT,
        note TEXT,
        upi_intent TEXT,
        rejection_reason TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        confirmed_at TEXT,
        FOREIGN KEY(payer_id) REFERENCES participants(id),
        FOREIGN KEY(payee_id) REFERENCES participants(id)
    )''',
    # Links survive expense deletion only while the payment is terminal
    '''CREATE TABLE IF NOT EXISTS payment_shares (
        payment_id INTEGER NOT NULL,
        expense_id INTEGER NOT NULL,
        participant_id INTEGER NOT NULL,
        accepted INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (payment_id, expense_id, participant_id),
        FOREIGN KEY(payment_id) REFERENCES payments(id)
    )''',
    'CREATE INDEX IF NOT EXISTS idx_payments_payer ON payments(payer_id, status)',
    'CREATE INDEX IF NOT EXISTS idx_payments_payee ON payments(payee_id, status)',
    'CREATE INDEX IF NOT EXISTS idx_payment_shares_share ON payment_shares(expense_id, participant_id)',
]


def get_connection(db_file: Optional[str] = None):
    settings = get_settings()
    conn = sqlite3.connect(db_file or settings.db_file, timeout=settings.lock_timeout,
                           check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


@contextmanager
def transaction(db_file: Optional[str] = None):
    """One atomic unit of work.

    BEGIN IMMEDIATE takes the write lock up front, so two writers touching the
    same payment or share are serialized; anything raised rolls back.
    """
    conn = get_connection(db_file)
    try:
        conn.execute('BEGIN IMMEDIATE')
        try:
            yield conn
        except BaseException:
            conn.execute('ROLLBACK')
            raise
        conn.execute('COMMIT')
    finally:
        conn.close()


@contextmanager
def reading(db_file: Optional[str] = None):
    conn = get_connection(db_file)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_file: Optional[str] = None):
    with transaction(db_file) as conn:
        for stmt in SCHEMA:
            conn.execute(stmt)


# --- Participants & groups ---

def add_participant(conn, name: str, upi_id: Optional[str] = None) -> int:
    c = conn.execute('INSERT INTO participants (name, upi_id) VALUES (?, ?)', (name, upi_id))
    return c.lastrowid


def set_upi_id(conn, pid: int, upi_id: Optional[str]):
    c = conn.execute('UPDATE participants SET upi_id=? WHERE id=?', (upi_id, pid))
    if c.rowcount == 0:
        raise NotFoundError(f"Participant {pid} not found")


def get_participant(conn, pid: int) -> Participant:
    row = conn.execute('SELECT id, name, upi_id FROM participants WHERE id=?', (pid,)).fetchone()
    if row is None:
        raise NotFoundError(f"Participant {pid} not found")
    return Participant(row['id'], row['name'], row['upi_id'])


def get_participants(conn) -> List[Participant]:
    rows = conn.execute('SELECT id, name, upi_id FROM participants ORDER BY name').fetchall()
    return [Participant(r['id'], r['name'], r['upi_id']) for r in rows]


def create_group(conn, name: str, description: str, created_at: str) -> int:
    c = conn.execute('INSERT INTO groups (name, description, created_at) VALUES (?, ?, ?)',
                     (name, description, created_at))
    return c.lastrowid


def get_groups(conn) -> List[Group]:
    rows = conn.execute('SELECT id, name, description, created_at FROM groups ORDER BY created_at DESC').fetchall()
    return [Group(r['id'], r['name'], r['description'], r['created_at']) for r in rows]


# --- Expenses ---

# Percentages are stored as text so the declared Decimal survives untouched.
def _text(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def insert_expense(conn, entry: LedgerEntry) -> int:
    c = conn.execute('''INSERT INTO expenses (group_id, description, category, notes, currency, amount,
                        payer_id, split_type, expense_type, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                     (entry.group_id, entry.description, entry.category.value, entry.notes, entry.currency,
                      entry.total, entry.payer, entry.strategy.value, entry.expense_type.value, entry.created_at))
    expense_id = c.lastrowid
    conn.executemany('''INSERT INTO shares (expense_id, position, participant_id, percentage,
                        declared_amount, final_share, status) VALUES (?, ?, ?, ?, ?, ?, ?)''',
                     [(expense_id, pos, s.participant, _text(s.percentage), s.declared_amount, s.final_share,
                       s.status.value) for pos, s in enumerate(entry.shares)])
    return expense_id


def _load_shares(conn, expense_ids: Sequence[int]) -> dict:
    by_expense = {eid: [] for eid in expense_ids}
    if not expense_ids:
        return by_expense
    marks = ','.join('?' * len(expense_ids))
    rows = conn.execute(f'''SELECT expense_id, participant_id, percentage, declared_amount, final_share, status
                            FROM shares WHERE expense_id IN ({marks}) ORDER BY expense_id, position''',
                        list(expense_ids)).fetchall()
    for r in rows:
        by_expense[r['expense_id']].append(Share(r['participant_id'], r['final_share'], _decimal(r['percentage']),
                                                 r['declared_amount'], ShareStatus(r['status'])))
    return by_expense


def _entries(conn, rows) -> List[LedgerEntry]:
    shares = _load_shares(conn, [r['id'] for r in rows])
    return [LedgerEntry(id=r['id'], payer=r['payer_id'], total=r['amount'], strategy=SplitStrategy(r['split_type']),
                        shares=shares[r['id']], created_at=r['created_at'], description=r['description'],
                        group_id=r['group_id'], category=Category(r['category']), notes=r['notes'],
                        currency=r['currency'], expense_type=ExpenseType(r['expense_type']))
            for r in rows]


def get_expense(conn, expense_id: int) -> LedgerEntry:
    rows = conn.execute('SELECT * FROM expenses WHERE id=?', (expense_id,)).fetchall()
    if not rows:
        raise NotFoundError(f"Expense {expense_id} not found")
    return _entries(conn, rows)[0]


def get_expenses(conn, group_id: Optional[int] = None, participant: Optional[int] = None) -> List[LedgerEntry]:
    query = 'SELECT * FROM expenses WHERE 1=1'
    params = []
    if group_id is not None:
        query += ' AND group_id=?'
        params.append(group_id)
    if participant is not None:
        query += ''' AND (payer_id=? OR id IN (SELECT expense_id FROM shares WHERE participant_id=?))'''
        params.extend([participant, participant])
    query += ' ORDER BY created_at DESC, id DESC'
    return _entries(conn, conn.execute(query, params).fetchall())


def get_expenses_between(conn, a: int, b: int) -> List[LedgerEntry]:
    rows = conn.execute('''SELECT * FROM expenses e WHERE
                           (e.payer_id=? AND EXISTS (SELECT 1 FROM shares s WHERE s.expense_id=e.id AND s.participant_id=?))
                           OR (e.payer_id=? AND EXISTS (SELECT 1 FROM shares s WHERE s.expense_id=e.id AND s.participant_id=?))
                           ORDER BY e.created_at, e.id''', (a, b, b, a)).fetchall()
    return _entries(conn, rows)


def delete_expense(conn, expense_id: int):
    conn.execute('DELETE FROM shares WHERE expense_id=?', (expense_id,))
    conn.execute('DELETE FROM expenses WHERE id=?', (expense_id,))


def get_share_status(conn, key: ShareKey) -> ShareStatus:
    row = conn.execute('SELECT status FROM shares WHERE expense_id=? AND participant_id=?',
                       (key.expense_id, key.participant)).fetchone()
    if row is None:
        raise NotFoundError(f"No share for participant {key.participant} in expense {key.expense_id}")
    return ShareStatus(row['status'])


def advance_share(conn, key: ShareKey, frm: Iterable[ShareStatus], to: ShareStatus) -> bool:
    """Move a share to ``to`` only if it is currently in one of ``frm``."""
    frm = [s.value for s in frm]
    marks = ','.join('?' * len(frm))
    c = conn.execute(f'UPDATE shares SET status=? WHERE expense_id=? AND participant_id=? AND status IN ({marks})',
                     [to.value, key.expense_id, key.participant] + frm)
    return c.rowcount == 1


# --- Payments ---

def insert_payment(conn, payment: Payment) -> int:
    c = conn.execute('''INSERT INTO payments (payer_id, payee_id, amount, method, status, source, transaction_ref,
                        note, upi_intent, rejection_reason, created_at, updated_at, confirmed_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                     (payment.payer, payment.payee, payment.amount, payment.method.value, payment.status.value,
                      payment.source, payment.transaction_ref, payment.note, payment.upi_intent,
                      payment.rejection_reason, payment.created_at, payment.updated_at, payment.confirmed_at))
    payment_id = c.lastrowid
    conn.executemany('INSERT INTO payment_shares (payment_id, expense_id, participant_id) VALUES (?, ?, ?)',
                     [(payment_id, k.expense_id, k.participant) for k in payment.shares])
    return payment_id


def _payment(conn, row) -> Payment:
    links = conn.execute('''SELECT expense_id, participant_id FROM payment_shares WHERE payment_id=?
                            ORDER BY expense_id, participant_id''', (row['id'],)).fetchall()
    return Payment(id=row['id'], payer=row['payer_id'], payee=row['payee_id'], amount=row['amount'],
                   method=PaymentMethod(row['method']), status=PaymentStatus(row['status']), source=row['source'],
                   created_at=row['created_at'], updated_at=row['updated_at'],
                   shares=[ShareKey(r['expense_id'], r['participant_id']) for r in links],
                   transaction_ref=row['transaction_ref'], note=row['note'], upi_intent=row['upi_intent'],
                   rejection_reason=row['rejection_reason'], confirmed_at=row['confirmed_at'])


def get_payment(conn, payment_id: int) -> Payment:
    row = conn.execute('SELECT * FROM payments WHERE id=?', (payment_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Payment {payment_id} not found")
    return _payment(conn, row)


def find_payments(conn, payer: Optional[int] = None, payee: Optional[int] = None,
                  party: Optional[int] = None, statuses: Optional[Iterable[PaymentStatus]] = None,
                  limit: Optional[int] = None, skip: int = 0) -> List[Payment]:
    query, params = _payment_filter(payer, payee, party, statuses)
    query = 'SELECT * FROM payments' + query + ' ORDER BY created_at DESC, id DESC'
    if limit is not None:
        query += ' LIMIT ? OFFSET ?'
        params += [limit, skip]
    return [_payment(conn, r) for r in conn.execute(query, params).fetchall()]


def count_payments(conn, payer=None, payee=None, party=None, statuses=None) -> int:
    query, params = _payment_filter(payer, payee, party, statuses)
    return conn.execute('SELECT COUNT(*) FROM payments' + query, params).fetchone()[0]


def sum_payments(conn, payer=None, payee=None, party=None, statuses=None):
    query, params = _payment_filter(payer, payee, party, statuses)
    row = conn.execute('SELECT COALESCE(SUM(amount), 0), COUNT(*) FROM payments' + query, params).fetchone()
    return row[0], row[1]


def _payment_filter(payer, payee, party, statuses):
    clauses, params = [], []
    if payer is not None:
        clauses.append('payer_id=?')
        params.append(payer)
    if payee is not None:
        clauses.append('payee_id=?')
        params.append(payee)
    if party is not None:
        clauses.append('(payer_id=? OR payee_id=?)')
        params.extend([party, party])
    if statuses:
        statuses = [PaymentStatus(s).value for s in statuses]
        clauses.append(f"status IN ({','.join('?' * len(statuses))})")
        params.extend(statuses)
    return (' WHERE ' + ' AND '.join(clauses)) if clauses else '', params


def active_links(conn, keys: Sequence[ShareKey]) -> List[int]:
    """Ids of created/pending payments already linked to any of ``keys``."""
    found = set()
    for k in keys:
        rows = conn.execute('''SELECT p.id FROM payment_shares ps JOIN payments p ON p.id = ps.payment_id
                               WHERE ps.expense_id=? AND ps.participant_id=? AND p.status IN (?, ?)''',
                            (k.expense_id, k.participant, PaymentStatus.CREATED.value,
                             PaymentStatus.PENDING.value)).fetchall()
        found.update(r['id'] for r in rows)
    return sorted(found)


def expense_has_active_payment(conn, expense_id: int) -> bool:
    row = conn.execute('''SELECT 1 FROM payment_shares ps JOIN payments p ON p.id = ps.payment_id
                          WHERE ps.expense_id=? AND p.status IN (?, ?) LIMIT 1''',
                       (expense_id, PaymentStatus.CREATED.value, PaymentStatus.PENDING.value)).fetchone()
    return row is not None


def mark_link_accepted(conn, payment_id: int, key: ShareKey):
    conn.execute('UPDATE payment_shares SET accepted=1 WHERE payment_id=? AND expense_id=? AND participant_id=?',
                 (payment_id, key.expense_id, key.participant))


def accepted_links(conn, payment_id: int) -> List[ShareKey]:
    rows = conn.execute('''SELECT expense_id, participant_id FROM payment_shares
                           WHERE payment_id=? AND accepted=1''', (payment_id,)).fetchall()
    return [ShareKey(r['expense_id'], r['participant_id']) for r in rows]


def swap_payment_status(conn, payment_id: int, expected: Iterable[PaymentStatus], new: PaymentStatus,
                        updated_at: str, **fields):
    """Compare-and-swap the payment's status; raises ConflictError on a lost race."""
    expected = [PaymentStatus(s).value for s in expected]
    sets = ['status=?', 'updated_at=?'] + [f'{name}=?' for name in fields]
    params = [new.value, updated_at] + list(fields.values()) + [payment_id] + expected
    c = conn.execute(f"UPDATE payments SET {', '.join(sets)} WHERE id=? AND status IN ({','.join('?' * len(expected))})",
                     params)
    if c.rowcount != 1:
        current = get_payment(conn, payment_id).status
        logger.warning("Payment %s: expected status in %s, found %s", payment_id, expected, current.value)
        raise ConflictError(f"Payment {payment_id} is {current.value}, cannot move to {new.value}")
