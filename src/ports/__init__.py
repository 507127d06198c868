"""Port interfaces - Layer boundary contracts.

Ports consumed by the chat relay core:
    MessageStorePort   - Chat message persistence
    TicketStorePort    - Support ticket persistence
    UserDirectoryPort  - Profile lookup for admin-facing envelopes
    ChatConnection     - Duplex transport seen by the relay

Ports consumed by the HTTP surface:
    MediaStoragePort   - Attachment upload / delete
"""

from src.ports.connection_port import ChatConnection
from src.ports.media_storage_port import MediaStoragePort
from src.ports.message_store_port import MessageStorePort
from src.ports.ticket_store_port import TicketStorePort
from src.ports.user_directory_port import UserDirectoryPort

__all__ = [
    "ChatConnection",
    "MediaStoragePort",
    "MessageStorePort",
    "TicketStorePort",
    "UserDirectoryPort",
]
