from collections import defaultdict
from collections.abc import Mapping
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from errors import InvariantError, SplitError
from models import (
    BalanceScope, CustomInput, EqualInput, LedgerEntry, PercentageInput, Share,
    ShareKey, ShareStatus, SplitStrategy, Transfer,
)
from money import round_cents, to_minor, to_percentage

HUNDRED = Decimal(100)

_INPUT_TYPES = {
    SplitStrategy.EQUAL: EqualInput,
    SplitStrategy.PERCENTAGE: PercentageInput,
    SplitStrategy.CUSTOM: CustomInput,
}


# --- Split engine ---

def normalize_split_inputs(strategy: SplitStrategy, raw: Iterable) -> List:
    """Turn loosely shaped participant input into the strategy's input type.

    Accepts bare participant ids, mappings with ``user`` plus ``percentage``
    or ``amount`` (display units), or already-typed inputs.
    """
    try:
        strategy = SplitStrategy(strategy)
    except ValueError:
        raise SplitError(f"Invalid split type: {strategy!r}") from None
    if strategy not in _INPUT_TYPES:
        raise SplitError(f"Cannot split with strategy '{strategy.value}'")
    wanted = _INPUT_TYPES[strategy]
    out = []
    for item in raw:
        if isinstance(item, wanted):
            out.append(item)
            continue
        if isinstance(item, (EqualInput, PercentageInput, CustomInput)):
            raise SplitError(f"{type(item).__name__} given for a {strategy.value} split")
        if isinstance(item, Mapping):
            user = item.get("user")
        else:
            user = item
        if user is None:
            raise SplitError("Every split participant needs a user")
        if strategy is SplitStrategy.EQUAL:
            out.append(EqualInput(user))
        elif strategy is SplitStrategy.PERCENTAGE:
            pct = item.get("percentage") if isinstance(item, Mapping) else None
            if pct is None:
                raise SplitError(f"Participant {user} is missing a percentage")
            out.append(PercentageInput(user, to_percentage(pct)))
        else:
            amount = item.get("amount") if isinstance(item, Mapping) else None
            if amount is None:
                raise SplitError(f"Participant {user} is missing an amount")
            out.append(CustomInput(user, to_minor(amount)))
    return out


def _equal_shares(total: int, inputs: Sequence[EqualInput]) -> List[Share]:
    n = len(inputs)
    base = total // n
    remainder = total - base * n
    return [Share(p.participant, base + (1 if i < remainder else 0)) for i, p in enumerate(inputs)]


def _percentage_shares(total: int, inputs: Sequence[PercentageInput]) -> List[Share]:
    pcts = [to_percentage(p.percentage) for p in inputs]
    for p, pct in zip(inputs, pcts):
        if not 0 < pct <= HUNDRED:
            raise SplitError(f"Percentage for participant {p.participant} must be in (0, 100]")
    declared = sum(pcts, Decimal(0))
    if round_cents(declared) != HUNDRED:
        raise SplitError(f"Percentages must add up to 100 (got {declared})")
    # Floors are taken against the declared sum so they never exceed the total
    # when it rounds to 100 without being exactly 100.
    shares = [Share(p.participant, int(total * pct // declared), percentage=pct) for p, pct in zip(inputs, pcts)]
    remainder = total - sum(s.final_share for s in shares)
    for s in shares:
        if remainder == 0:
            break
        s.final_share += 1
        remainder -= 1
    return shares


def _custom_shares(total: int, inputs: Sequence[CustomInput]) -> List[Share]:
    for p in inputs:
        if p.amount <= 0:
            raise SplitError(f"Amount for participant {p.participant} must be greater than zero")
    declared = sum(p.amount for p in inputs)
    if declared != total:
        raise SplitError(f"Custom amounts must add up to the total amount ({declared} != {total})")
    return [Share(p.participant, p.amount, declared_amount=p.amount) for p in inputs]


def split(total: int, strategy: SplitStrategy, participants: Sequence) -> List[Share]:
    """Divide ``total`` minor units among ``participants``.

    Remainders go one minor unit at a time to participants in input order,
    so the shares always sum to ``total``.
    """
    if isinstance(total, bool) or not isinstance(total, int):
        raise SplitError("Total must be an integer number of minor units")
    if total <= 0:
        raise SplitError("Total must be greater than zero")
    inputs = normalize_split_inputs(strategy, participants)
    if not inputs:
        raise SplitError("No participants to split between")
    ids = [p.participant for p in inputs]
    if len(set(ids)) != len(ids):
        raise SplitError("Each participant may appear only once in a split")

    strategy = SplitStrategy(strategy)
    if strategy is SplitStrategy.EQUAL:
        shares = _equal_shares(total, inputs)
    elif strategy is SplitStrategy.PERCENTAGE:
        shares = _percentage_shares(total, inputs)
    else:
        shares = _custom_shares(total, inputs)

    allocated = sum(s.final_share for s in shares)
    if allocated != total or any(s.final_share < 0 for s in shares):
        raise InvariantError(f"{strategy.value} split of {total} allocated {allocated}")
    return shares


# --- Balance engine ---

def _in_scope(entry: LedgerEntry, scope: Optional[BalanceScope]) -> bool:
    if scope is None:
        return True
    if scope.group_id is not None and entry.group_id != scope.group_id:
        return False
    if scope.participant is not None and scope.participant != entry.payer \
            and scope.participant not in entry.participants:
        return False
    if scope.pair is not None and entry.payer not in scope.pair:
        return False
    return True


def _counts(entry: LedgerEntry, share: Share, scope: Optional[BalanceScope], outstanding_only: bool) -> bool:
    if outstanding_only and share.status is ShareStatus.PAID:
        return False
    if scope is not None and scope.pair is not None:
        a, b = scope.pair
        other = b if entry.payer == a else a
        return share.participant == other
    return True


def net_balances(entries: Iterable[LedgerEntry], scope: Optional[BalanceScope] = None,
                 outstanding_only: bool = False) -> Dict[int, int]:
    """Signed minor units per participant: positive is owed, negative owes.

    Each share moves its amount from the participant to the payer; the
    payer's own share cancels out, which is the same as crediting the payer
    with the total and debiting every share.
    """
    balances: Dict[int, int] = defaultdict(int)
    for entry in entries:
        if not _in_scope(entry, scope):
            continue
        whole_entry = scope is None or scope.pair is None
        if whole_entry:
            balances[entry.payer] += 0
        for share in entry.shares:
            if whole_entry:
                balances[share.participant] += 0
            if not _counts(entry, share, scope, outstanding_only):
                continue
            balances[share.participant] -= share.final_share
            balances[entry.payer] += share.final_share
    return dict(balances)


def pair_outstanding(entries: Iterable[LedgerEntry], payer: int, payee: int) -> Tuple[int, List[ShareKey]]:
    """Net amount ``payer`` still owes ``payee`` and the unpaid shares behind it.

    Shares in both directions are returned, since a net payment settles both.
    """
    entries = list(entries)
    balances = net_balances(entries, BalanceScope(pair=(payer, payee)), outstanding_only=True)
    keys = []
    for entry in entries:
        if entry.payer not in (payer, payee):
            continue
        other = payee if entry.payer == payer else payer
        share = entry.share_of(other)
        if share is not None and share.status is not ShareStatus.PAID and share.final_share > 0:
            keys.append(ShareKey(entry.id, other))
    return -balances.get(payer, 0), keys


# --- Settlement reducer ---

def reduce_to_transfers(balances: Dict[int, int]) -> List[Transfer]:
    # Returns transfers (debtor -> creditor) that zero every balance
    creditors = [[pid, bal] for pid, bal in balances.items() if bal > 0]
    debtors = [[pid, -bal] for pid, bal in balances.items() if bal < 0]
    creditors.sort(key=lambda x: (-x[1], x[0]))
    debtors.sort(key=lambda x: (-x[1], x[0]))
    transfers = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        d_id, d_amt = debtors[i]
        c_id, c_amt = creditors[j]
        amt = min(d_amt, c_amt)
        transfers.append(Transfer(d_id, c_id, amt))
        debtors[i][1] -= amt
        creditors[j][1] -= amt
        if debtors[i][1] == 0:
            i += 1
        if creditors[j][1] == 0:
            j += 1
    return transfers


def user_settlement(entries: Iterable[LedgerEntry], participant: int,
                    outstanding_only: bool = False) -> Tuple[int, List[Transfer]]:
    balances = net_balances(entries, BalanceScope(participant=participant), outstanding_only)
    transfers = [t for t in reduce_to_transfers(balances)
                 if participant in (t.from_participant, t.to_participant)]
    return balances.get(participant, 0), transfers


def is_valid_upi_id(upi_id: Optional[str], min_length: int = 7) -> bool:
    if not upi_id or not isinstance(upi_id, str):
        return False
    trimmed = upi_id.strip()
    if trimmed.lower() in ("", "n/a", "null") or len(trimmed) < min_length:
        return False
    parts = trimmed.split("@")
    return len(parts) == 2 and all(parts)
