import logging
import os

import pandas as pd
import requests
import streamlit as st
import streamlit.components.v1 as components

from portalscraper.web import ServerManager
from portalscraper.web.portalscraper_client import (
    error_message,
    filter_events,
    post_email,
    post_scrape,
)

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

# ----------------------------
# Page setup
# ----------------------------
st.set_page_config(page_title="Portal Events", layout="wide")
st.title("Portal Events")

st.markdown(
    """
    <style>
    .stButton>button { border-radius: 6px; height: 2.4rem; }
    .small-muted { color: #6b7280; font-size: 0.9rem; }
    </style>
    """,
    unsafe_allow_html=True,
)


# ----------------------------
# Session state
# ----------------------------
def get_manager() -> ServerManager:
    if "server" not in st.session_state:
        st.session_state.server = ServerManager(
            port=int(os.environ.get("PORT", "5174")),
        )
    return st.session_state.server


sm = get_manager()

for key, default in (
    ("events", []),
    ("selected", set()),
    ("html", ""),
    ("editor_version", 0),
):
    if key not in st.session_state:
        st.session_state[key] = default


def _reset_editor() -> None:
    st.session_state.editor_version += 1


# ----------------------------
# Sidebar: server status
# ----------------------------
st.sidebar.header("Server")
st.sidebar.markdown(f"API: `{sm.base_url()}`")
st.sidebar.markdown(f"Reachable: **{'Yes' if sm.is_http_up() else 'No'}**")
if st.sidebar.button("Start server", use_container_width=True):
    sm.ensure_running()
    st.rerun()
if st.sidebar.button("Stop server", use_container_width=True):
    sm.stop()
    st.rerun()
with st.sidebar.expander("Server logs"):
    st.code(sm.tail_logs(200) or "(empty)")

col_left, col_right = st.columns([1, 1])

# ----------------------------
# Left: scrape & select
# ----------------------------
with col_left:
    st.subheader("Scrape & Select")

    portal_email = st.text_input("Portal email")
    portal_password = st.text_input("Portal password", type="password")
    max_events = st.number_input("Max events", min_value=0, value=200, step=10)

    if st.button("Scrape events", type="primary"):
        if not (portal_email and portal_password):
            st.warning("Enter your portal email and password first.")
        else:
            try:
                with st.spinner("Scraping..."):
                    sm.ensure_running()
                    st.session_state.events = post_scrape(
                        sm.base_url(),
                        portal_email.strip(),
                        portal_password,
                        int(max_events),
                    )
                # Nothing is preselected after a scrape
                st.session_state.selected = set()
                st.session_state.html = ""
                _reset_editor()
            except requests.HTTPError as http_err:
                st.error(error_message(http_err))
                logger.debug("Scrape HTTP error: %s", http_err)
            except requests.RequestException as e:
                st.error(f"Failed to reach the API: {e}")
                logger.exception("Scrape request failed")

    events = st.session_state.events
    selected: set[int] = st.session_state.selected

    if events:
        query = st.text_input("Search by title, date or summary")
        sa, da = st.columns(2)
        if sa.button("Select all", use_container_width=True):
            st.session_state.selected = set(range(len(events)))
            _reset_editor()
            st.rerun()
        if da.button("Deselect all", use_container_width=True):
            st.session_state.selected = set()
            _reset_editor()
            st.rerun()

        visible = filter_events(events, query)
        table = pd.DataFrame(
            [
                {
                    "Select": i in selected,
                    "Title": e.get("title") or "Untitled Event",
                    "Date": e.get("date") or "",
                    "Time": e.get("time") or "",
                    "Location": e.get("location") or "",
                }
                for i, e in visible
            ],
            index=[i for i, _ in visible],
        )
        edited = st.data_editor(
            table,
            disabled=["Title", "Date", "Time", "Location"],
            use_container_width=True,
            height=480,
            key=f"events-{st.session_state.editor_version}-{query}",
        )
        for idx, row in edited.iterrows():
            if row["Select"]:
                selected.add(int(idx))
            else:
                selected.discard(int(idx))

        st.markdown(
            f'<div class="small-muted">{len(visible)} shown, {len(selected)} of {len(events)} selected</div>',
            unsafe_allow_html=True,
        )
    else:
        st.info("No events yet. Scrape to load the portal's event list.")

# ----------------------------
# Right: build & preview email
# ----------------------------
with col_right:
    st.subheader("Email")
    title = st.text_input("Email title", value="This Week at the Club")

    chosen = [e for i, e in enumerate(st.session_state.events) if i in st.session_state.selected]
    b1, b2 = st.columns(2)
    template = None
    if b1.button("Build Insider email", use_container_width=True):
        template = "insider"
    if b2.button("Build Interest email", use_container_width=True):
        template = "interest"

    if template:
        if not chosen:
            st.warning("Select at least one event.")
        else:
            try:
                st.session_state.html = post_email(sm.base_url(), chosen, title, template)
            except requests.HTTPError as http_err:
                st.error(error_message(http_err))
            except requests.RequestException as e:
                st.error(f"Failed to build email: {e}")
                logger.exception("Email request failed")

    if st.session_state.html:
        st.download_button(
            "Download HTML",
            data=st.session_state.html.encode("utf-8"),
            file_name="portal-events.html",
            mime="text/html",
            use_container_width=True,
        )
        components.html(st.session_state.html, height=900, scrolling=True)
