"""
Streamlit Operator Console for Banker

This is the interface bank admins use to look after the ledger by hand.
Bots talk to the HTTP API; people use this.

DESIGN PRINCIPLES:
1. Every money movement goes through the same engines as the API
2. Explicit confirmation before anything moves
3. Failed credits are front and centre, never buried

The console runs its own set of components from the same settings as
the API, so it needs the same storage backend configured.
"""

import asyncio
from datetime import datetime

import streamlit as st

from banker.audit import configure_logging, create_correlation_id
from banker.config import get_settings, validate_all_settings
from banker.core import (
    CreditPendingError,
    DeadlineExceededError,
    InsufficientFundsError,
    LedgerError,
    UnrecordedTransferError,
)
from banker.models import InvoiceStatus, LedgerFilter
from banker.orchestrator import BankComponents, create_app_components
from banker.services.storage import StorageError


# Page configuration
st.set_page_config(
    page_title="Banker Console",
    page_icon="🏦",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .warning-box {
        padding: 20px;
        background-color: #fff3cd;
        border-radius: 10px;
        border-left: 5px solid #ffc107;
        margin: 10px 0;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> BankComponents:
    """Get or create application components (cached)."""
    configure_logging(get_settings().app.log_level)
    return create_app_components()


def show_error(error: Exception) -> None:
    if isinstance(error, InsufficientFundsError):
        st.warning(f"💸 {error}")
    elif isinstance(error, UnrecordedTransferError):
        st.error(
            f"🚨 {error}\n\nBalances changed without a ledger entry. Look for "
            "`transfer_unrecorded` in the audit table and record it by hand."
        )
    elif isinstance(error, CreditPendingError) or (
        isinstance(error, DeadlineExceededError) and error.pending_entry is not None
    ):
        st.error(
            f"⚠️ {error}\n\nThe sender was debited. Check **Pending Credits** "
            "on the Ledger page to reconcile."
        )
    else:
        st.error(f"❌ {type(error).__name__}: {error}")


def main():
    """Main application entry point."""
    bank = get_components()

    st.sidebar.title("🏦 Banker Console")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["👛 Accounts", "💸 Transfer", "🧾 Invoices", "📒 Ledger", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(f"**Banker account:** `{bank.banker_id}`")

    if page == "👛 Accounts":
        render_accounts_page(bank)
    elif page == "💸 Transfer":
        render_transfer_page(bank)
    elif page == "🧾 Invoices":
        render_invoices_page(bank)
    elif page == "📒 Ledger":
        render_ledger_page(bank)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_accounts_page(bank: BankComponents):
    st.title("👛 Accounts")

    user = st.text_input("Look up a user", placeholder="U01ABCDEF")
    if user:
        try:
            account = run_async(bank.accounts.get_balance(user))
        except (LedgerError, StorageError) as e:
            show_error(e)
        else:
            st.markdown(f'<p class="big-number">{account.balance} gp</p>', unsafe_allow_html=True)

    st.markdown("---")
    st.markdown("### All accounts")
    accounts = run_async(bank.accounts.list_accounts())
    if not accounts:
        st.info("No accounts yet.")
        return

    rows = [
        {"User": a.user_id, "Balance": a.balance, "Version": a.version}
        for a in sorted(accounts, key=lambda a: a.balance, reverse=True)
    ]
    st.dataframe(rows, use_container_width=True, hide_index=True)
    st.metric("Money in circulation", sum(a.balance for a in accounts))


def render_transfer_page(bank: BankComponents):
    st.title("💸 Transfer")

    kind = st.radio(
        "Kind",
        ["Between users", "Give (banker pays)", "Fine (user pays banker)"],
        horizontal=True,
    )

    with st.form("transfer_form"):
        if kind == "Between users":
            from_user = st.text_input("From")
            to_user = st.text_input("To")
        elif kind.startswith("Give"):
            from_user = bank.banker_id
            to_user = st.text_input("To")
        else:
            from_user = st.text_input("From")
            to_user = bank.banker_id
        amount = st.number_input("Amount (gp)", min_value=1, step=1, value=1)
        note = st.text_input("Note")
        admin_note = st.text_input("Admin note (not shown to users)")
        confirmed = st.checkbox("I have checked the details above")
        submitted = st.form_submit_button("Send")

    if not submitted:
        return
    if not confirmed:
        st.warning("Please confirm the details first.")
        return

    try:
        entry = run_async(bank.transfers.transfer(
            from_user,
            to_user,
            int(amount),
            note,
            admin_note=admin_note or None,
            correlation_id=create_correlation_id(),
        ))
    except (LedgerError, StorageError) as e:
        show_error(e)
    else:
        st.success(f"✅ Sent {entry.amount} gp from {entry.from_user} to {entry.to_user} (entry {entry.id})")


def render_invoices_page(bank: BankComponents):
    st.title("🧾 Invoices")

    status = st.selectbox(
        "Status",
        [InvoiceStatus.PROCESSING, InvoiceStatus.PAID, InvoiceStatus.DENIED],
        format_func=lambda s: s.value,
    )
    invoices = run_async(bank.invoices.list_invoices(status))
    if not invoices:
        st.info(f"No {status.value.lower()} invoices.")
        return

    for invoice in invoices:
        header = f"{invoice.amount} gp · {invoice.to_user} → {invoice.from_user} · {invoice.reason or 'no reason'}"
        with st.expander(header):
            st.caption(f"Invoice {invoice.id}")
            if invoice.claim:
                st.markdown(
                    f'<div class="warning-box">Held by <code>{invoice.claim}</code></div>',
                    unsafe_allow_html=True,
                )
            if invoice.status is not InvoiceStatus.PROCESSING:
                continue

            col1, col2, col3 = st.columns(3)
            with col1:
                if st.button("✅ Pay", key=f"pay_{invoice.id}"):
                    try:
                        entry = run_async(bank.invoices.pay_invoice(
                            invoice.id, correlation_id=create_correlation_id()
                        ))
                    except (LedgerError, StorageError) as e:
                        show_error(e)
                    else:
                        st.success(f"Paid (entry {entry.id})")
            with col2:
                if st.button("🚫 Deny", key=f"deny_{invoice.id}"):
                    try:
                        run_async(bank.invoices.deny_invoice(invoice.id))
                    except (LedgerError, StorageError) as e:
                        show_error(e)
                    else:
                        st.success("Denied")
            with col3:
                if invoice.claim and st.button("🔓 Release hold", key=f"release_{invoice.id}"):
                    try:
                        run_async(bank.invoices.release_hold(invoice.id))
                    except (LedgerError, StorageError) as e:
                        show_error(e)
                    else:
                        st.success("Hold released")


def render_ledger_page(bank: BankComponents):
    st.title("📒 Ledger")

    pending = run_async(bank.ledger.pending_credits())
    if pending:
        st.markdown("### ⚠️ Pending Credits")
        st.markdown(
            '<div class="warning-box">These senders were debited but the recipient '
            "was never credited. Credit the recipient (or refund the sender) by hand, "
            "then release any invoice hold.</div>",
            unsafe_allow_html=True,
        )
        st.dataframe(
            [e.to_public_dict() for e in pending],
            use_container_width=True,
            hide_index=True,
        )

    st.markdown("### Recent entries")
    col1, col2 = st.columns(2)
    with col1:
        user = st.text_input("Filter by user")
    with col2:
        limit = st.number_input("Show last", min_value=10, max_value=1000, value=50, step=10)

    entries = run_async(bank.ledger.list_entries(
        LedgerFilter(user=user or None, limit=int(limit))
    ))
    if not entries:
        st.info("No ledger entries.")
        return

    rows = []
    for entry in reversed(entries):
        row = entry.to_public_dict()
        row["timestamp"] = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
        rows.append(row)
    st.dataframe(rows, use_container_width=True, hide_index=True)


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    sections = [
        ("Application", "app"),
        ("Ledger", "ledger"),
        ("API Auth", "auth"),
        ("Google Sheets (Storage)", "google_sheets"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - OK")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
