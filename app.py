import streamlit as st

import expenses
import payments
from config import configure_logging
from db import init_db, get_participants, get_groups, reading, set_upi_id, transaction
from errors import LedgerError
from logic import net_balances, reduce_to_transfers, user_settlement
from models import (
    BalanceScope, Category, ExplicitAmount, PairNet, PaymentMethod, ShareRef, ShareStatus, SplitStrategy,
)
from money import balance_message, format_money, to_minor
from notifications import NotificationHub
from reports import balances_frame, expenses_frame, settle_summary, shares_frame, transfers_frame

st.set_page_config(page_title="Split App", layout="wide")
configure_logging()
init_db()


@st.cache_resource
def get_hub() -> NotificationHub:
    return NotificationHub()


hub = get_hub()


def run(action, success_message=None):
    """Call into the ledger, surfacing its errors on the page."""
    try:
        result = action()
    except LedgerError as e:
        st.error(str(e))
        return None
    if success_message:
        st.success(success_message)
    return result


st.title("Split App: Split Bills in Seconds")

# --- Sidebar: who am I, groups, participants ---
with reading() as conn:
    participants = get_participants(conn)
    groups = get_groups(conn)
names = {p.id: p.name for p in participants}

st.sidebar.header("👤 Acting as")
if participants:
    me = st.sidebar.selectbox("You are:", options=list(names), format_func=lambda pid: names[pid])
else:
    me = None
    st.sidebar.info("Add yourself below to get started.")

with st.sidebar.form("add_participant_form"):
    new_name = st.text_input("Enter a name (e.g., Sam)")
    new_upi = st.text_input("UPI ID (optional, e.g., sam@bank)")
    if st.form_submit_button("Add"):
        if run(lambda: expenses.register_participant(new_name, new_upi or None), f"Added {new_name.strip()}!"):
            st.rerun()

if me is not None:
    with st.sidebar.expander("My UPI ID"):
        upi = st.text_input("UPI ID", value=next(p.upi_id or "" for p in participants if p.id == me))
        if st.button("Save UPI ID"):
            def save():
                with transaction() as conn:
                    set_upi_id(conn, me, upi.strip() or None)
                return True
            if run(save, "Saved."):
                st.rerun()

st.sidebar.header("💬 Hangouts / Groups")
group_names = {g.id: g.name for g in groups}
group_id = st.sidebar.selectbox("Scope:", options=[None] + list(group_names),
                                format_func=lambda gid: "Everything" if gid is None else group_names[gid])
with st.sidebar.expander("➕ Create New Hangout/Group"):
    g_name = st.text_input("Hangout/Group Name")
    g_desc = st.text_area("Description (optional)")
    if st.button("Create Hangout/Group"):
        if run(lambda: expenses.create_group(g_name, g_desc), f"Created '{g_name.strip()}'!"):
            st.rerun()

if me is None:
    st.stop()

# --- Add a bill ---
st.header("Add a Bill or Expense")
with st.expander("Add a Bill", expanded=True):
    desc = st.text_input("What was the bill for? (e.g., Pizza)")
    amt = st.number_input("How much was it?", min_value=0.01, step=0.01)
    category = st.selectbox("Category", options=list(Category), format_func=lambda c: c.value,
                            index=list(Category).index(Category.OTHER))
    strategy = st.radio("Split", options=[SplitStrategy.EQUAL, SplitStrategy.PERCENTAGE, SplitStrategy.CUSTOM],
                        format_func=lambda s: s.value.title(), horizontal=True)
    involved = st.multiselect("Who shared this?", options=list(names), default=list(names),
                              format_func=lambda pid: names[pid])
    split_inputs = []
    even_pct = round(100 / len(involved), 2) if involved else 0.0
    for i, pid in enumerate(involved):
        if strategy is SplitStrategy.PERCENTAGE:
            # last person takes the rounding leftover so the defaults add up to 100
            default = even_pct if i < len(involved) - 1 else round(100 - even_pct * (len(involved) - 1), 2)
            pct = st.number_input(f"{names[pid]} %", min_value=0.0, max_value=100.0, step=0.01,
                                  value=default, key=f"pct_{pid}")
            split_inputs.append({"user": pid, "percentage": str(pct)})
        elif strategy is SplitStrategy.CUSTOM:
            part = st.number_input(f"{names[pid]} pays", min_value=0.0, step=0.01, key=f"amt_{pid}")
            split_inputs.append({"user": pid, "amount": str(part)})
        else:
            split_inputs.append(pid)
    if st.button("Split this bill"):
        if not desc:
            st.error("Please describe the bill (e.g., 'Groceries').")
        elif run(lambda: expenses.record_expense(me, to_minor(str(amt)), strategy, split_inputs, description=desc,
                                                 group_id=group_id, category=category, notify=hub),
                 "Bill added and split!"):
            st.rerun()

scope = BalanceScope(group_id=group_id)
entries = expenses.list_expenses(scope)

if entries:
    st.subheader("All Bills & Expenses")
    st.dataframe(expenses_frame(entries, names), use_container_width=True, hide_index=True)
    for e in entries:
        with st.expander(f"{e.description} ({format_money(e.total)}) - {e.created_at.split('T')[0]}"):
            st.write(f"**Payer:** {names.get(e.payer, e.payer)}")
            st.dataframe(shares_frame(e, names), use_container_width=True, hide_index=True)
            if e.payer == me and st.button("Delete", key=f"delete_{e.id}"):
                if run(lambda: expenses.delete_expense(e.id, me) or True, "Expense deleted!"):
                    st.rerun()
            if e.payer == me:
                for s in e.shares:
                    if s.participant != me and s.status is not ShareStatus.PAID and \
                            st.button(f"Remind {names.get(s.participant)}", key=f"remind_{e.id}_{s.participant}"):
                        run(lambda: expenses.send_reminder(e.id, me, s.participant, notify=hub), "Reminder sent.")
            mine = e.share_of(me)
            if e.payer != me and mine is not None and mine.status is not ShareStatus.PAID:
                method = st.selectbox("Pay with", list(PaymentMethod), format_func=lambda m: m.value.upper(),
                                      key=f"method_{e.id}")
                if st.button(f"Pay {format_money(mine.final_share)}", key=f"pay_{e.id}"):
                    if run(lambda: payments.create_payment(me, e.payer, ShareRef(e.id), method, notify=hub),
                           "Payment created."):
                        st.rerun()
else:
    st.info("No bills yet. Add your first one above!")

# --- Balances ---
st.header("Who Owes What? 🧾")
balances = net_balances(entries, outstanding_only=True)
if balances:
    def color_bal(val):
        color = 'green' if val >= 0 else 'red'
        return f'color: {color}'
    st.dataframe(balances_frame(balances, names).style.map(color_bal, subset=["Balance"])
                 .format({"Balance": "{:.2f}"}), use_container_width=True, hide_index=True)

    my_balance, my_transfers = user_settlement(entries, me, outstanding_only=True)
    st.write(f"**You:** {balance_message(my_balance, 'The group')}")
    for t in my_transfers:
        st.write(f"• {names.get(t.from_participant)} ➔ {names.get(t.to_participant)}: {format_money(t.amount)}")

    st.subheader("Settle Up")
    transfers = reduce_to_transfers(balances)
    st.dataframe(transfers_frame(transfers, names), use_container_width=True, hide_index=True)
    st.code(settle_summary(entries, balances, transfers, names), language="")
else:
    st.info("Add everyone and a bill to see who owes what.")

# --- Payments ---
st.header("Payments 💸")
others = [pid for pid in names if pid != me]
with st.expander("Pay someone"):
    if others:
        payee = st.selectbox("Pay to", options=others, format_func=lambda pid: names[pid])
        how = st.radio("Amount", ["Everything I owe them", "Custom amount"], horizontal=True)
        custom = st.number_input("Custom amount", min_value=0.01, step=0.01) if how == "Custom amount" else None
        method = st.selectbox("Method", list(PaymentMethod), format_func=lambda m: m.value.upper())
        if st.button("Create payment"):
            resolution = PairNet() if custom is None else ExplicitAmount(to_minor(str(custom)))
            if run(lambda: payments.create_payment(me, payee, resolution, method, notify=hub), "Payment created."):
                st.rerun()

stats = payments.payment_stats(me)
c1, c2, c3 = st.columns(3)
c1.metric("To pay", format_money(stats["to_pay"]["total"]), stats["to_pay"]["count"])
c2.metric("To confirm", format_money(stats["to_confirm"]["total"]), stats["to_confirm"]["count"])
c3.metric("Confirmed", format_money(stats["confirmed"]["total"]), stats["confirmed"]["count"])

for p in payments.pending_to_pay(me):
    with st.container(border=True):
        st.write(f"**{format_money(p.amount)}** to {names.get(p.payee, p.payee)} via {p.method.value.upper()} "
                 f"({p.status.value})")
        if p.upi_intent:
            st.code(p.upi_intent, language="")
        ref = st.text_input("Transaction ID", key=f"ref_{p.id}")
        col1, col2 = st.columns(2)
        if col1.button("I've paid", key=f"submit_{p.id}"):
            if run(lambda: payments.submit_proof(p.id, me, ref, notify=hub), "Awaiting payee confirmation."):
                st.rerun()
        if col2.button("Cancel", key=f"cancel_{p.id}"):
            if run(lambda: payments.cancel_payment(p.id, me, notify=hub), "Payment cancelled."):
                st.rerun()

for p in payments.pending_to_confirm(me):
    with st.container(border=True):
        st.write(f"{names.get(p.payer, p.payer)} says they paid you **{format_money(p.amount)}** "
                 f"(ref: {p.transaction_ref})")
        reason = st.text_input("Reason if rejecting", key=f"reason_{p.id}")
        col1, col2 = st.columns(2)
        if col1.button("Confirm", key=f"confirm_{p.id}"):
            if run(lambda: payments.confirm_payment(p.id, me, True, notify=hub), "Payment confirmed."):
                st.rerun()
        if col2.button("Reject", key=f"reject_{p.id}"):
            if run(lambda: payments.confirm_payment(p.id, me, False, reason, notify=hub), "Payment rejected."):
                st.rerun()

with st.expander("History"):
    total, history = payments.payment_history(me)
    st.caption(f"{total} payments")
    for p in history:
        who = f"to {names.get(p.payee, p.payee)}" if p.payer == me else f"from {names.get(p.payer, p.payer)}"
        st.write(f"{p.created_at.split('T')[0]} · {format_money(p.amount)} {who} · {p.status.value}")

st.sidebar.header(f"🔔 Inbox ({hub.unread_count(me)} new)")
if st.sidebar.button("Mark all as read"):
    hub.mark_all_read(me)
    st.rerun()
for note in hub.inbox(me)[:10]:
    if note.read:
        st.sidebar.write(f"• {note.event.message}")
    elif st.sidebar.button(f"🆕 {note.event.message}", key=f"note_{note.id}"):
        hub.mark_read(me, note.id)
        st.rerun()
