import time
from datetime import datetime

import streamlit as st
from api_client import ApiError, ChatClient

st.set_page_config(page_title="duochat", layout="centered")

if "client" not in st.session_state:
    st.session_state.client = ChatClient()
if "peer" not in st.session_state:
    st.session_state.peer = None
if "conversation_id" not in st.session_state:
    st.session_state.conversation_id = None

client: ChatClient = st.session_state.client

st.title("💬 duochat")

if not client.token:
    login_tab, register_tab = st.tabs(["Login", "Register"])

    with login_tab:
        user = st.text_input("Username", key="login_user")
        pw = st.text_input("Password", type="password", key="login_pass")
        if st.button("Log in"):
            try:
                client.login(user, pw)
                st.rerun()
            except ApiError as e:
                st.error(e.message)

    with register_tab:
        user = st.text_input("New username", key="reg_user")
        pw = st.text_input("New password", type="password", key="reg_pass")
        if st.button("Register"):
            try:
                client.register(user, pw)
                st.rerun()
            except ApiError as e:
                st.error(e.message)

    st.stop()

st.sidebar.markdown(f"**Signed in as {client.user}**")

try:
    contacts = client.contacts()
    pending = client.pending_requests()
    sent = client.sent_requests()
except ApiError as e:
    st.sidebar.error(e.message)
    contacts, pending, sent = [], [], []

with st.sidebar.form("add_contact", clear_on_submit=True):
    target = st.text_input("Add contact")
    if st.form_submit_button("Send request") and target.strip():
        try:
            client.send_request(target.strip())
            st.success(f"Request sent to {target.strip()}")
        except ApiError as e:
            st.error(e.message)

if pending:
    st.sidebar.subheader("Pending requests")
    for requester in pending:
        col_name, col_ok, col_no = st.sidebar.columns([3, 1, 1])
        col_name.write(requester)
        if col_ok.button("✔", key=f"accept_{requester}"):
            client.accept_request(requester)
            st.rerun()
        if col_no.button("✖", key=f"decline_{requester}"):
            client.decline_request(requester)
            st.rerun()

if sent:
    st.sidebar.caption("Waiting on: " + ", ".join(sent))

st.sidebar.subheader("Contacts")
if not contacts:
    st.sidebar.info("No contacts yet.")
for contact in contacts:
    if st.sidebar.button(contact, key=f"open_{contact}"):
        st.session_state.peer = contact
        st.session_state.conversation_id = client.open_conversation(contact)["id"]

if st.sidebar.button("Log out"):
    st.session_state.clear()
    st.rerun()

if not st.session_state.conversation_id:
    st.info("Pick a contact in the sidebar to start chatting.")
    st.stop()

peer = st.session_state.peer
conv_id = st.session_state.conversation_id
st.subheader(f"Chat with {peer}")

try:
    conv = client.conversation(conv_id)
    client.mark_read(conv_id)
except ApiError as e:
    st.error(e.message)
    st.stop()

for m in conv["messages"]:
    is_me = m["sender"] == client.user
    align = "flex-end" if is_me else "flex-start"
    bg = "#4CAF50" if is_me else "#1E1E1E"
    when = datetime.fromtimestamp(m["timestamp"] / 1000).strftime("%H:%M")
    seen = " ✓✓" if is_me and m["readBy"].get(peer) else ""
    st.markdown(
        f"""
        <div style="display:flex; justify-content:{align}; margin:6px 0;">
            <div style="max-width:70%; padding:10px 14px; background:{bg};
                        border-radius:8px; color:#FFFFFF;">
                <div style="font-size:12px; opacity:0.8;">{m['sender']} · {when}{seen}</div>
                <div style="margin-top:4px; white-space:pre-wrap;">{m['body']}</div>
            </div>
        </div>
        """,
        unsafe_allow_html=True,
    )

if conv["typing"].get(peer):
    st.caption(f"{peer} is typing…")

st.divider()
msg = st.text_area("Message", height=100, on_change=lambda: client.set_typing(conv_id, True))
if st.button("Send"):
    if not msg.strip():
        st.warning("Type a message first.")
    else:
        try:
            client.send_message(conv_id, msg.strip())
            client.set_typing(conv_id, False)
            st.rerun()
        except ApiError as e:
            st.error(e.message)

# polling refresh
time.sleep(2)
st.rerun()
