"""RelayChat - Streamlit Chat Interface.

Thin client for the chat relay. All model access goes through the relay's
POST /api/chat. This file handles:
  - Per-tab ChatSession in st.session_state (history, pending image, manager)
  - Image attach / replace / remove with a thumbnail preview
  - Disabling input while a turn is in flight, with a Stop button
  - Rendering replies and system notices
"""

import time

import requests
import streamlit as st
import structlog
from dotenv import load_dotenv

from frontend.conversation import Role
from frontend.errors import EmptyTurn, UnsupportedAttachment
from frontend.session import ChatSession

load_dotenv()

logger = structlog.get_logger(__name__)

IMAGE_TYPES = ["png", "jpg", "jpeg", "gif", "webp"]
POLL_INTERVAL_S = 0.5

# Page setup
st.set_page_config(
    page_title="RelayChat",
    layout="centered",
)

# Custom styles
st.markdown("""
<style>
    .stApp {
        max-width: 900px;
        margin: 0 auto;
    }
    .stChatMessage {
        padding: 0.75rem 1rem;
    }
    .status-badge {
        display: inline-block;
        padding: 2px 8px;
        border-radius: 12px;
        font-size: 0.75rem;
        font-weight: 600;
    }
    .preview-thumb {
        max-width: 100%;
        border-radius: 8px;
        border: 1px solid rgba(128, 128, 128, 0.2);
    }
    .status-ok { background: #d4edda; color: #155724; }
    .status-err { background: #f8d7da; color: #721c24; }
</style>
""", unsafe_allow_html=True)


def init_session():
    """Initialize session state on first load."""
    if "chat" not in st.session_state:
        st.session_state.chat = ChatSession()
    if "uploader_key" not in st.session_state:
        st.session_state.uploader_key = 0


def relay_status(chat: ChatSession) -> str:
    """Ask the relay's /health endpoint how it is doing."""
    try:
        resp = requests.get(f"{chat.settings.relay_url}/health?t={time.time()}", timeout=3)
        return resp.json().get("status", "unknown")
    except (requests.RequestException, ValueError):
        return "offline"


def reset_uploader():
    st.session_state.uploader_key += 1


def attach_file(chat: ChatSession, uploaded, from_picker: bool = False) -> None:
    """Make an uploaded or pasted file the pending image."""
    try:
        if from_picker:
            chat.sync_upload(uploaded)
        else:
            chat.attach(uploaded.getvalue(), uploaded.type, uploaded.name)
    except UnsupportedAttachment as e:
        logger.warning("ui.attachment_rejected", name=uploaded.name, media_type=uploaded.type)
        st.toast(f"[WARN] {e}")


def render_sidebar(chat: ChatSession):
    with st.sidebar:
        st.markdown("### Relay")
        status = relay_status(chat)
        if status == "healthy":
            st.markdown('<span class="status-badge status-ok">* Relay Healthy</span>',
                        unsafe_allow_html=True)
        elif status == "degraded":
            st.markdown('<span class="status-badge status-err">* Relay Degraded</span>',
                        unsafe_allow_html=True)
            st.info("[INFO] Relay is up but has no API key configured.")
        else:
            st.markdown('<span class="status-badge status-err">* Relay Offline</span>',
                        unsafe_allow_html=True)
        st.caption(chat.settings.relay_url)

        st.divider()
        st.markdown("### Image")
        uploaded = st.file_uploader(
            "Attach an image",
            type=IMAGE_TYPES,
            key=f"uploader_{st.session_state.uploader_key}",
            disabled=chat.busy,
        )
        # Compared by file_id; clearing the picker drops the image it supplied
        attach_file(chat, uploaded, from_picker=True)
        pending = chat.attachments.pending

        if pending is not None:
            st.markdown(f'<img src="{chat.attachments.preview}" class="preview-thumb"/>',
                        unsafe_allow_html=True)
            st.caption(pending.name)
            if st.button("Remove image", use_container_width=True, disabled=chat.busy):
                chat.attachments.clear()
                reset_uploader()
                st.rerun()

        st.divider()
        if st.button("[DEL] New Chat", use_container_width=True):
            chat.reset()
            reset_uploader()
            st.rerun()


def render_history(chat: ChatSession):
    """Render every stored turn, with system notices styled by kind."""
    for msg in chat.store.snapshot():
        if msg.role is Role.SYSTEM:
            if chat.notice_kind(msg) == "cancelled":
                st.info(msg.text)
            else:
                st.error(msg.text)
            continue
        with st.chat_message(msg.role.value):
            st.markdown(msg.text)


@st.fragment(run_every=POLL_INTERVAL_S)
def wait_for_reply(chat: ChatSession):
    """Poll the in-flight turn and rerun the page once it settles."""
    if not chat.busy:
        st.rerun()
    with st.chat_message("assistant"):
        st.markdown("_Thinking..._")
    if st.button("Stop", key="stop_button"):
        chat.stop()
        st.rerun()


def main():
    """Run the Streamlit chat application."""
    init_session()
    chat: ChatSession = st.session_state.chat

    st.title("RelayChat")
    st.caption("Chat with a hosted model through the relay")

    render_sidebar(chat)
    render_history(chat)

    if chat.busy:
        wait_for_reply(chat)

    submitted = st.chat_input(
        "Type a message...",
        accept_file=True,
        file_type=IMAGE_TYPES,
        disabled=chat.busy,
    )
    if submitted:
        if submitted.files:
            # Pasted or dropped image replaces the pending one
            attach_file(chat, submitted.files[0])
        try:
            chat.submit(submitted.text)
        except EmptyTurn as e:
            st.toast(str(e))
            return
        reset_uploader()
        st.rerun()


if __name__ == "__main__":
    main()
