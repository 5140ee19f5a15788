"""
Client side of siso: HTTP API wrapper, per-user chat session and poller.

ChatSession holds everything the UI shows (chats, messages per chat, the
active chat). It is an explicit object handed to the Poller rather than
module state, and every poll is tagged with the chat id it was issued for
so a response that arrives after the user switched chats is thrown away.

Sent messages are shown immediately as optimistic local entries. The
server never echoes a sender's own messages back (inboxes only contain
messages addressed to the reader), so an optimistic entry normally lives
until the user leaves the chat or reloads the session. Each optimistic
entry remembers the id the server assigned; if a fetch ever contains that
id the local copy is dropped in favour of the confirmed one.
"""

import enum
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

import httpx

from siso.config import settings
from siso.content import MAX_IMAGE_BYTES, ImageContent
from siso.identity import extract_user_id

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A request to the siso API failed (transport error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NoActiveChat(Exception):
    """An operation needs an active chat but none is selected."""


class ContentTooLarge(Exception):
    """Image exceeds the client-side upload cap."""


class SisoClient:
    """
    Thin wrapper around the siso HTTP API.

    Failures are raised as ApiError and never retried here; retrying is up
    to the caller.
    """

    def __init__(self, base_url: str = "", http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self._http = http or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise ApiError(
                f"{method} {path} failed: {response.status_code} {detail}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"{method} {path} returned a non-JSON body", status_code=response.status_code) from e

    def ensure_chat(self, my_user_id: str, other_user_id: str) -> str:
        data = self._request("POST", "/chats", json={"myUserId": my_user_id, "otherUserId": other_user_id})
        return data["chatId"]

    def list_chats(self, user_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", "/chats", params={"userId": user_id})

    def delete_chat(self, chat_id: str, user_id: str) -> None:
        self._request("DELETE", f"/chats/{chat_id}", params={"userId": user_id})

    def send_message(self, chat_id: str, sender_id: str, receiver_id: str, content: str) -> str:
        data = self._request(
            "POST",
            "/messages",
            json={"chatId": chat_id, "senderId": sender_id, "receiverId": receiver_id, "content": content},
        )
        return data["id"]

    def fetch_inbox(self, chat_id: str, user_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", "/messages", params={"chatId": chat_id, "userId": user_id})

    def view_message(self, message_id: str) -> None:
        self._request("POST", f"/messages/{message_id}/view", json={})

    def set_display_name(self, user_id: str, display_name: str) -> None:
        self._request("POST", "/users/profile", json={"userId": user_id, "displayName": display_name})

    def get_profiles(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        return self._request("GET", "/users", params={"ids": ",".join(ids)})

    def find_users(self, q: str) -> List[Dict[str, Any]]:
        return self._request("GET", "/users/find", params={"q": q})

    def admin_stats(self, admin_code: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/admin/stats", json={"adminCode": admin_code, "userId": user_id})


@dataclass
class ChatMessage:
    id: str
    chat_id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: int
    kind: str = "text"
    local_only: bool = False
    server_id: Optional[str] = None

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ChatMessage":
        """Build from a GET /messages item; a malformed item raises ApiError."""
        try:
            return cls(
                id=data["id"],
                chat_id=data["chatId"],
                sender_id=data["senderId"],
                receiver_id=data["receiverId"],
                content=data["content"],
                created_at=data["createdAt"],
                kind=data.get("kind", "text"),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ApiError(f"Malformed message in inbox response: {e!r}") from e

    @property
    def is_image(self) -> bool:
        return self.kind == "image"


class PollState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    RECONCILING = "reconciling"


def reconcile(server_messages: List[ChatMessage], local_messages: List[ChatMessage]) -> List[ChatMessage]:
    """
    Merge a fresh inbox fetch with the optimistic entries held locally.

    Server messages come first, then pending optimistic ones, then a stable
    sort by created_at. Optimistic entries whose server id shows up in the
    fetch are dropped.
    """
    confirmed_ids = {message.id for message in server_messages}
    pending = [
        message for message in local_messages
        if message.local_only and message.server_id not in confirmed_ids
    ]
    combined = list(server_messages) + pending
    combined.sort(key=lambda message: message.created_at)
    return combined


class ChatSession:
    """In-memory chat state of one user, shared by the UI and the Poller."""

    def __init__(self, api: SisoClient, user_id: str):
        self.api = api
        self.user_id = user_id
        self.chats: List[Dict[str, Any]] = []
        self.active_chat_id: Optional[str] = None
        self.messages_by_chat: Dict[str, List[ChatMessage]] = {}
        self._poll_states: Dict[str, PollState] = {}
        # message id -> chat id, for messages consumed on the server
        self._viewed_ids: Dict[str, str] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Chats
    # -------------------------------------------------------------------------

    def load_chats(self) -> List[Dict[str, Any]]:
        self.chats = self.api.list_chats(self.user_id)
        if self.active_chat_id is None and self.chats:
            self.set_active_chat(self.chats[0]["id"])
        return self.chats

    def open_chat(self, other: str) -> str:
        """
        Open (or create) the chat with another user.

        Args:
            other: The other user's id or invite link
        """
        other_user_id = extract_user_id(other)
        if not other_user_id:
            raise ValueError("No user id given")

        chat_id = self.api.ensure_chat(self.user_id, other_user_id)
        self.load_chats()
        self.set_active_chat(chat_id)
        return chat_id

    def active_chat(self) -> Optional[Dict[str, Any]]:
        if self.active_chat_id is None:
            return None
        for chat in self.chats:
            if chat["id"] == self.active_chat_id:
                return chat
        return None

    def other_participant(self, chat: Dict[str, Any]) -> str:
        return chat["userBId"] if chat["userAId"] == self.user_id else chat["userAId"]

    def set_active_chat(self, chat_id: Optional[str]) -> None:
        """
        Switch the active chat.

        Optimistic entries of the chat being left are dropped, and any poll
        still in flight will have its result discarded.
        """
        with self._lock:
            previous = self.active_chat_id
            if previous is not None and previous != chat_id:
                self.messages_by_chat[previous] = [
                    message for message in self.messages_by_chat.get(previous, [])
                    if not message.local_only
                ]
            self.active_chat_id = chat_id
            self._epoch += 1

    def delete_chat(self, chat_id: str) -> None:
        """Delete a chat on the server; failures propagate to the caller."""
        self.api.delete_chat(chat_id, self.user_id)
        with self._lock:
            self.chats = [chat for chat in self.chats if chat["id"] != chat_id]
            self.messages_by_chat.pop(chat_id, None)
            if self.active_chat_id == chat_id:
                self.active_chat_id = None
                self._epoch += 1

    def reload(self) -> None:
        """Forget all local messages, including optimistic ones."""
        with self._lock:
            self.messages_by_chat.clear()
            self._viewed_ids.clear()
            self._epoch += 1

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def messages(self, chat_id: Optional[str] = None) -> List[ChatMessage]:
        chat_id = chat_id or self.active_chat_id
        with self._lock:
            return list(self.messages_by_chat.get(chat_id, []))

    def poll_state(self, chat_id: str) -> PollState:
        return self._poll_states.get(chat_id, PollState.IDLE)

    def poll(self, chat_id: str) -> Optional[List[ChatMessage]]:
        """
        Fetch the inbox of chat_id and reconcile it with local state.

        Returns the merged message list, or None when the poll was skipped
        (another poll for the chat is in flight) or its result was discarded
        (the active chat changed while fetching). Fetch errors propagate.
        """
        with self._lock:
            if self.poll_state(chat_id) is not PollState.IDLE:
                logger.debug(f"Poll for chat {chat_id} already in flight, skipping")
                return None
            self._poll_states[chat_id] = PollState.POLLING
            epoch = self._epoch

        try:
            fetched = [ChatMessage.from_wire(data) for data in self.api.fetch_inbox(chat_id, self.user_id)]

            with self._lock:
                if epoch != self._epoch or chat_id != self.active_chat_id:
                    logger.debug(f"Discarding stale poll result for chat {chat_id}")
                    return None

                self._poll_states[chat_id] = PollState.RECONCILING
                self._prune_viewed(chat_id, {message.id for message in fetched})
                fetched = [message for message in fetched if message.id not in self._viewed_ids]
                merged = reconcile(fetched, self.messages_by_chat.get(chat_id, []))
                self.messages_by_chat[chat_id] = merged
                return list(merged)
        finally:
            with self._lock:
                self._poll_states[chat_id] = PollState.IDLE

    def _prune_viewed(self, chat_id: str, fetched_ids: Set[str]) -> None:
        # Once the server stops returning a viewed id it can never come back
        for message_id, viewed_chat_id in list(self._viewed_ids.items()):
            if viewed_chat_id == chat_id and message_id not in fetched_ids:
                del self._viewed_ids[message_id]

    def send_text(self, text: str) -> Optional[ChatMessage]:
        text = text.strip()
        if not text:
            return None
        return self._send_content(text, kind="text")

    def send_image(self, data: bytes, mime_type: str) -> ChatMessage:
        if len(data) > MAX_IMAGE_BYTES:
            raise ContentTooLarge(f"Image is too large (max {MAX_IMAGE_BYTES} bytes)")
        content = ImageContent(data=data, mime_type=mime_type).to_data_uri()
        return self._send_content(content, kind="image")

    def _send_content(self, content: str, kind: str) -> ChatMessage:
        chat = self.active_chat()
        if chat is None:
            raise NoActiveChat("Select or open a chat first")
        other_user_id = self.other_participant(chat)

        server_id = self.api.send_message(chat["id"], self.user_id, other_user_id, content)

        message = ChatMessage(
            id=str(uuid.uuid4()),
            chat_id=chat["id"],
            sender_id=self.user_id,
            receiver_id=other_user_id,
            content=content,
            created_at=int(time.time() * 1000),
            kind=kind,
            local_only=True,
            server_id=server_id,
        )
        with self._lock:
            self.messages_by_chat.setdefault(chat["id"], []).append(message)
        return message

    def view(self, message: ChatMessage) -> None:
        """
        View a message, removing it from the local list.

        Server-confirmed messages are consumed on the server first; a failure
        there is logged and the message is still removed locally. Optimistic
        messages are only removed locally.
        """
        if not message.local_only:
            try:
                self.api.view_message(message.id)
                with self._lock:
                    self._viewed_ids[message.id] = message.chat_id
            except ApiError as e:
                logger.error(f"Failed to consume message {message.id}: {e}")

        with self._lock:
            self.messages_by_chat[message.chat_id] = [
                m for m in self.messages_by_chat.get(message.chat_id, []) if m.id != message.id
            ]


class Poller:
    """
    Periodically polls the session's active chat on a single timer thread.

    Poll failures are logged and retried on the next interval.
    """

    def __init__(self, session: ChatSession, interval: Optional[float] = None):
        self.session = session
        self.interval = interval if interval is not None else settings.POLL_INTERVAL_SECONDS
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> Optional[List[ChatMessage]]:
        chat_id = self.session.active_chat_id
        if chat_id is None:
            return None
        try:
            return self.session.poll(chat_id)
        except ApiError as e:
            logger.warning(f"Poll failed for chat {chat_id}: {e}")
        except Exception:
            # The timer thread must survive any single failed tick
            logger.exception(f"Unexpected error while polling chat {chat_id}")
        return None

    def _run(self) -> None:
        while not self._stop.is_set():
            self.tick()
            if self._stop.wait(self.interval):
                break

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="siso-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
