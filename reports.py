from typing import Dict, List, Sequence

import pandas as pd

from models import LedgerEntry, ShareStatus, Transfer
from money import format_money, to_display


def _name(names: Dict[int, str], pid: int) -> str:
    return names.get(pid, str(pid))


def balances_frame(balances: Dict[int, int], names: Dict[int, str]) -> pd.DataFrame:
    rows = [{"Participant": _name(names, pid), "Balance": float(to_display(amt))}
            for pid, amt in sorted(balances.items(), key=lambda kv: (-kv[1], _name(names, kv[0])))]
    return pd.DataFrame(rows, columns=["Participant", "Balance"])


def expenses_frame(entries: Sequence[LedgerEntry], names: Dict[int, str]) -> pd.DataFrame:
    rows = []
    for e in entries:
        rows.append({
            "Id": e.id,
            "Date": e.created_at.split("T")[0],
            "Description": e.description,
            "Category": e.category.value,
            "Paid by": _name(names, e.payer),
            "Amount": float(to_display(e.total)),
            "Split": e.strategy.value,
            "Unpaid": sum(1 for s in e.shares if s.status is not ShareStatus.PAID),
        })
    return pd.DataFrame(rows, columns=["Id", "Date", "Description", "Category", "Paid by", "Amount", "Split",
                                       "Unpaid"])


def shares_frame(entry: LedgerEntry, names: Dict[int, str]) -> pd.DataFrame:
    return pd.DataFrame([{"Participant": _name(names, s.participant),
                          "Share": float(to_display(s.final_share)),
                          "Status": s.status.value} for s in entry.shares],
                        columns=["Participant", "Share", "Status"])


def transfers_frame(transfers: Sequence[Transfer], names: Dict[int, str]) -> pd.DataFrame:
    return pd.DataFrame([{"From": _name(names, t.from_participant), "To": _name(names, t.to_participant),
                          "Amount": float(to_display(t.amount))} for t in transfers],
                        columns=["From", "To", "Amount"])


def settle_summary(entries: Sequence[LedgerEntry], balances: Dict[int, int], transfers: Sequence[Transfer],
                   names: Dict[int, str], symbol=None) -> str:
    # Chat-friendly text, oldest expense first
    expense_lines: List[str] = ["*Expenses:*"]
    for e in sorted(entries, key=lambda e: (e.created_at, e.id or 0)):
        shared = ", ".join(_name(names, p) for p in e.participants)
        expense_lines.append(f"- {e.description}: {format_money(e.total, symbol)}\n"
                             f"  Paid by: {_name(names, e.payer)}\n  Split among: {shared}")
    if len(expense_lines) == 1:
        expense_lines.append("No expenses recorded.")

    balance_lines = ["*Balances:*"]
    for pid, amt in balances.items():
        balance_lines.append(f"{_name(names, pid)}: {'+' if amt >= 0 else ''}{format_money(amt, symbol)}")

    settle_lines = ["*Settle Up:*"]
    if transfers:
        settle_lines.extend(f"{_name(names, t.from_participant)} ➔ {_name(names, t.to_participant)}: "
                            f"{format_money(t.amount, symbol)}" for t in transfers)
    else:
        settle_lines.append("All settled!")

    return "\n\n".join("\n".join(block) for block in (expense_lines, balance_lines, settle_lines))
