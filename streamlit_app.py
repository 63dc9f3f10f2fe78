# streamlit_app.py
# ------------------------------------------------------------
# Dime Portfolio Dashboard
# Supabase + RLS · 3 Funds (IVV / VOO / QQQ)
# - People / funds / transactions live in Supabase; positions come from
#   the v_current_positions view.
# - Live refresh on any change to public.transactions.
# ------------------------------------------------------------

from __future__ import annotations

import atexit
import html
import logging
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import List, Optional, Tuple

import streamlit as st
from streamlit import runtime as st_runtime
from streamlit.runtime.scriptrunner import get_script_run_ctx

from dime_portfolio.aggregate import fund_percentages, fund_totals, grand_total, person_percentages, sort_shares
from dime_portfolio.charts import (
    BY_FUND,
    BY_PERSON,
    FUND_COLORS,
    has_any_data,
    history_frame,
    pie_chart,
    share_frame,
    stack_frame,
    stacked_bar,
    summary_frame,
)
from dime_portfolio.config import DEFAULTS, configure_logging, load_settings
from dime_portfolio.errors import ConfigurationError, DashboardError
from dime_portfolio.formatting import baht, percent
from dime_portfolio.runtime import BackgroundLoop, DashboardRuntime, SessionRegistry
from dime_portfolio.sync import SyncState

logger = logging.getLogger(__name__)

# ===============================
# THEME / STYLES — Light Grey
# ===============================
st.set_page_config(page_title="Dime Portfolio Dashboard", page_icon="📈", layout="wide")

LIGHT_GREY_CSS = """
<style>
:root{
  --bg0:#f6f7fb; --card:#ffffff; --accent:#6366F1; --ok:#059669; --busy:#ea580c;
  --txt:#0f172a; --muted:#6b7280; --border:#d7deea;
}
[data-testid="stAppViewContainer"]{color:var(--txt);background:var(--bg0);}
.block-container{padding-top:.6rem}

.kpi{background:var(--card);border:1px solid var(--border);border-radius:16px;padding:1rem;height:100%}
.kpi .title{font-size:.85rem;color:var(--muted)}
.kpi .value{margin-top:.4rem;font-size:1.45rem;font-weight:700;line-height:1.35}
.kpi .sub{margin-top:.3rem;font-size:.75rem;color:var(--muted)}
.rule{border-top:1px dashed var(--border);margin:.75rem 0}
.status{font-size:.75rem;color:var(--muted)}
.status .busy{color:var(--busy)} .status .ok{color:var(--ok)}
.cell-head{font-weight:600;color:var(--muted)}
.stButton>button{border-radius:10px;font-weight:600}
</style>
"""
st.markdown(LIGHT_GREY_CSS, unsafe_allow_html=True)

# ===============================
# STATE
# ===============================
KEY_RUNTIME = "runtime"
KEY_STARTUP_ERROR = "startup_error"
KEY_SEEN_VERSION = "seen_version"
KEY_FLASH = "flash"                # [(kind, message)] shown once at the top
KEY_OTP_EMAIL = "otp_email"        # email the magic link / code went to
KEY_STACK_MODE = "stack_mode"

NO_DATA = "— No data yet —"


@st.cache_resource
def background_loop() -> BackgroundLoop:
    loop = BackgroundLoop()
    atexit.register(loop.shutdown)
    return loop


@st.cache_resource
def session_registry() -> SessionRegistry:
    return SessionRegistry(background_loop())


def current_session_id() -> str:
    ctx = get_script_run_ctx()
    return ctx.session_id if ctx is not None else "local"


def session_is_active(session_id: str) -> bool:
    if not st_runtime.exists():
        return True
    return st_runtime.get_instance().is_active_session(session_id)


def read_secrets() -> dict:
    try:
        return dict(st.secrets)
    except FileNotFoundError:
        return {}


def init_state():
    if KEY_FLASH not in st.session_state:
        st.session_state[KEY_FLASH] = []
    if KEY_RUNTIME in st.session_state or KEY_STARTUP_ERROR in st.session_state:
        return
    try:
        settings = load_settings(read_secrets())
        configure_logging(settings.log_level)
        loop = background_loop()
        runtime = loop.run(DashboardRuntime.open(settings))
    except DashboardError as e:
        st.session_state[KEY_STARTUP_ERROR] = e
        return
    except FuturesTimeoutError:
        st.session_state[KEY_STARTUP_ERROR] = DashboardError("Supabase did not answer in time. Reload the page to retry.")
        return
    registry = session_registry()
    registry.sweep(session_is_active)
    registry.add(current_session_id(), runtime)
    st.session_state[KEY_RUNTIME] = runtime


def flash(kind: str, message: str) -> None:
    st.session_state[KEY_FLASH].append((kind, message))


def call(coro, success: Optional[str] = None) -> bool:
    """Run a coroutine on the background loop; failures become a flash message."""
    try:
        background_loop().run(coro)
    except DashboardError as e:
        flash("error", str(e))
        return False
    except FuturesTimeoutError:
        flash("error", "The backend did not answer in time; please try again.")
        return False
    if success:
        flash("success", success)
    return True


def show_flash(runtime: DashboardRuntime) -> None:
    messages: List[Tuple[str, str]] = st.session_state[KEY_FLASH]
    messages.extend(("error", m) for m in runtime.controller.drain_notices())
    st.session_state[KEY_FLASH] = []
    for kind, message in messages:
        if kind == "success":
            st.success(message)
        else:
            st.error(message)


@st.fragment(run_every=DEFAULTS.POLL_SECONDS)
def watch_for_changes(runtime: DashboardRuntime) -> None:
    # realtime pushes land on the background loop; rerun the page when the snapshot moved
    if runtime.controller.snapshot.version != st.session_state.get(KEY_SEEN_VERSION):
        st.rerun()


# ===============================
# SMALL UI HELPERS
# ===============================

def kpi(title: str, lines: List[str], subtitle: Optional[str] = None) -> None:
    body = "<br>".join(html.escape(line) for line in lines) or "—"
    sub = f'<div class="sub">{html.escape(subtitle)}</div>' if subtitle else ""
    st.markdown(
        f'<div class="kpi"><div class="title">{html.escape(title)}</div><div class="value">{body}</div>{sub}</div>',
        unsafe_allow_html=True,
    )


def status_badge(loading: bool, live: bool) -> None:
    state = '<span class="busy">Loading…</span>' if loading else '<span class="ok">Ready</span>'
    push = " · live updates on" if live else " · live updates off"
    st.markdown(f'<div class="status">Status: {state}{push}</div>', unsafe_allow_html=True)


# ===============================
# AUTH — magic link / one-time code
# ===============================

def login_widget(runtime: DashboardRuntime) -> None:
    session = runtime.session
    if session.is_authenticated:
        with st.sidebar:
            st.markdown(f"**Signed in as:** `{session.email}`")
            if st.button("Sign out", width="stretch"):
                if call(session.sign_out(), "Signed out."):
                    st.session_state.pop(KEY_OTP_EMAIL, None)
                    st.rerun()
        return
    with st.sidebar.expander("Sign in", expanded=True):
        email = st.text_input("Email", key="auth_email", placeholder="you@example.com")
        if st.button("Send magic link", width="stretch"):
            if call(session.sign_in_with_email(email), "Link sent to your email ✅"):
                st.session_state[KEY_OTP_EMAIL] = email.strip()
            st.rerun()
        sent_to = st.session_state.get(KEY_OTP_EMAIL)
        if sent_to:
            st.caption(f"Open the link, or type the code sent to {sent_to}.")
            code = st.text_input("Code", key="auth_code", max_chars=10)
            if st.button("Verify code", width="stretch"):
                if call(session.verify_code(sent_to, code), "Signed in."):
                    st.session_state.pop(KEY_OTP_EMAIL, None)
                st.rerun()


# ===============================
# PAGES
# ===============================

def page_overview(runtime: DashboardRuntime) -> None:
    snap = runtime.controller.snapshot
    symbols = runtime.controller.resolver.fund_symbols

    st.markdown("### Summary by person")
    table = summary_frame(snap.summary, symbols)
    if table.empty:
        st.info(NO_DATA)
    else:
        nice = table.copy()
        for c in [*symbols, "Total"]:
            nice[c] = nice[c].map(baht)
        st.dataframe(
            nice,
            width="stretch",
            hide_index=True,
            column_config={
                "Share %": st.column_config.ProgressColumn("Share of portfolio", format="%.1f%%", min_value=0, max_value=100),
            },
        )

    c1, c2 = st.columns(2)
    with c1:
        st.markdown("### Share by fund")
        by_fund = share_frame(fund_percentages(snap.summary, DEFAULTS.CHART_FUND_ORDER))
        if has_any_data(by_fund, "value"):
            st.plotly_chart(pie_chart(by_fund, FUND_COLORS), width="stretch", key="fund_pie")
        else:
            st.info(NO_DATA)
    with c2:
        st.markdown("### Share by person")
        by_person = share_frame(person_percentages(snap.summary))
        if has_any_data(by_person, "value"):
            st.plotly_chart(pie_chart(by_person), width="stretch", key="person_pie")
        else:
            st.info(NO_DATA)

    st.markdown('<div class="rule"></div>', unsafe_allow_html=True)
    mode = st.radio(
        "Stack",
        options=[BY_PERSON, BY_FUND],
        format_func=lambda m: "By person" if m == BY_PERSON else "By fund",
        horizontal=True,
        key=KEY_STACK_MODE,
    )
    stacked = stack_frame(snap.summary, DEFAULTS.CHART_FUND_ORDER)
    if has_any_data(stacked, "amount"):
        st.plotly_chart(stacked_bar(stacked, by=mode, fund_order=DEFAULTS.CHART_FUND_ORDER), width="stretch", key="stack_bar")
    else:
        st.info(NO_DATA)


def _commit_cell(runtime: DashboardRuntime, person_id: str, fund_id: str, delta_key: str, note_key: str) -> None:
    pending = runtime.pending
    # the click can arrive in the same rerun as the last keystroke
    pending.set_delta(person_id, fund_id, st.session_state.get(delta_key, ""))
    pending.set_note(person_id, fund_id, st.session_state.get(note_key, ""))
    person = runtime.controller.resolver.person_name(person_id)
    fund = runtime.controller.resolver.fund_symbol(fund_id)
    call(runtime.controller.commit(person_id, fund_id), f"Saved {fund} for {person}.")


def page_transactions(runtime: DashboardRuntime) -> None:
    resolver = runtime.controller.resolver
    pending = runtime.pending
    people, funds = resolver.people, resolver.funds
    st.markdown("### Add transactions")
    if not people or not funds:
        st.info("People and funds are not loaded yet. Sign in, then refresh.")
        return

    widths = [1.2] + [3] * len(funds)
    head = st.columns(widths)
    head[0].markdown('<span class="cell-head">Name</span>', unsafe_allow_html=True)
    for col, f in zip(head[1:], funds):
        col.markdown(f'<span class="cell-head">{html.escape(f.symbol)}</span>', unsafe_allow_html=True)

    for p in people:
        cols = st.columns(widths, vertical_alignment="center")
        cols[0].markdown(f"**{p.name}**")
        for col, f in zip(cols[1:], funds):
            draft = pending.get(p.id, f.id)
            rev = pending.revision(p.id, f.id)
            delta_key = f"delta:{p.id}:{f.id}:{rev}"
            note_key = f"note:{p.id}:{f.id}:{rev}"
            with col:
                a, b, c = st.columns([2, 3, 1.4])
                a.text_input(
                    f"{f.symbol} amount", value=draft.delta, key=delta_key, placeholder="Amount (+/-)",
                    label_visibility="collapsed",
                    on_change=lambda pid=p.id, fid=f.id, k=delta_key: pending.set_delta(pid, fid, st.session_state[k]),
                )
                b.text_input(
                    f"{f.symbol} note", value=draft.note, key=note_key, placeholder="Note",
                    label_visibility="collapsed",
                    on_change=lambda pid=p.id, fid=f.id, k=note_key: pending.set_note(pid, fid, st.session_state[k]),
                )
                c.button(
                    "Save", key=f"save:{p.id}:{f.id}", width="stretch",
                    on_click=_commit_cell, args=(runtime, p.id, f.id, delta_key, note_key),
                )


def page_history(runtime: DashboardRuntime) -> None:
    st.markdown("### Recent transactions")
    frame = history_frame(runtime.controller.snapshot.history)
    if frame.empty:
        st.info("— No transactions yet —")
        return

    def color(v: str) -> str:
        return "color:#059669" if v.startswith("+") else "color:#e11d48"

    st.dataframe(frame.style.map(color, subset=["Amount (Δ)"]), width="stretch", hide_index=True)
    st.caption(f"Latest {DEFAULTS.HISTORY_LIMIT} entries, newest first.")


def page_dashboard(runtime: DashboardRuntime) -> None:
    controller = runtime.controller
    snap = controller.snapshot
    st.session_state[KEY_SEEN_VERSION] = snap.version

    head_l, head_r = st.columns([3, 1], vertical_alignment="bottom")
    with head_l:
        st.markdown("# 📈 Dime Portfolio Dashboard")
        st.caption("Supabase + RLS · 3 Funds (IVV / VOO / QQQ)")
    with head_r:
        if st.button("↻ Refresh", width="stretch", disabled=snap.loading):
            call(controller.refresh())
            st.rerun()
        status_badge(snap.loading, snap.live)

    show_flash(runtime)

    if snap.state == SyncState.ERROR:
        st.error("Could not load people and funds.")
        if st.button("Retry loading"):
            call(controller.start())
            st.rerun()
    elif not runtime.session.is_authenticated and not snap.summary:
        st.info("Sign in from the sidebar to see the portfolio.")

    # KPI
    symbols = controller.resolver.fund_symbols
    totals = fund_totals(snap.summary, symbols)
    k1, k2, k3 = st.columns(3)
    with k1:
        kpi("Portfolio value", [baht(grand_total(snap.summary))], "All people · all funds")
    with k2:
        kpi("Total per fund", [f"{s}: {baht(totals[s])}" for s in symbols])
    with k3:
        kpi("Share per person", [f"{s.label}: {percent(s.value)}" for s in sort_shares(person_percentages(snap.summary))],
            "Percent of the whole portfolio")

    tabs = st.tabs(["Overview", "Add transactions", "Recent history"])
    with tabs[0]:
        page_overview(runtime)
    with tabs[1]:
        page_transactions(runtime)
    with tabs[2]:
        page_history(runtime)

    st.markdown('<div class="rule"></div>', unsafe_allow_html=True)
    st.caption("Sign in first (Supabase Auth) · the v_current_positions view needs security_invoker and RLS policies.")


# ===============================
# ROUTER
# ===============================
init_state()

if KEY_STARTUP_ERROR in st.session_state:
    err = st.session_state[KEY_STARTUP_ERROR]
    st.markdown("# 📈 Dime Portfolio Dashboard")
    if isinstance(err, ConfigurationError):
        st.sidebar.info("DB: Supabase not configured")
    st.error(str(err))
    if st.button("Retry"):
        st.session_state.pop(KEY_STARTUP_ERROR, None)
        st.rerun()
    st.stop()

runtime = st.session_state[KEY_RUNTIME]
login_widget(runtime)
st.sidebar.success("DB: Supabase connected")
page_dashboard(runtime)
watch_for_changes(runtime)
