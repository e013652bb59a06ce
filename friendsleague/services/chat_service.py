"""
Chat service for direct and group conversations.

Handles chat creation, message history, sending, read state (per-chat
last_read_at plus per-message read receipts), emoji reactions and ephemeral
media views. Real-time fan-out goes through the WebSocket manager and is best
effort.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, and_
from friendsleague.database.models import (
    Chat,
    ChatParticipant,
    ChatType,
    EphemeralView,
    Message,
    MessageReaction,
    MessageReadReceipt,
    MessageType,
    User,
)
from friendsleague.services import s3_service, user_service
from friendsleague.services.websocket_manager import notify_chat_members
from friendsleague.utils.constants import MESSAGE_PAGE_SIZE, MESSAGE_PAGE_SIZE_MAX
from friendsleague.utils.datetime_utils import utcnow, isoformat
from friendsleague.utils.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
import logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookups and access checks
# ---------------------------------------------------------------------------


async def get_chat_model(session: AsyncSession, chat_id: int) -> Chat:
    chat = await session.get(Chat, chat_id)
    if chat is None:
        raise NotFoundError("Chat not found")
    return chat


async def get_participant_ids(session: AsyncSession, chat_id: int) -> List[int]:
    result = await session.execute(
        select(ChatParticipant.user_id)
        .where(ChatParticipant.chat_id == chat_id)
        .order_by(ChatParticipant.joined_at, ChatParticipant.id)
    )
    return list(result.scalars().all())


async def get_participant(session: AsyncSession, chat_id: int, user_id: int) -> Optional[ChatParticipant]:
    result = await session.execute(
        select(ChatParticipant).where(
            ChatParticipant.chat_id == chat_id, ChatParticipant.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def is_participant(session: AsyncSession, chat_id: int, user_id: int) -> bool:
    return await get_participant(session, chat_id, user_id) is not None


async def require_participant(session: AsyncSession, chat_id: int, user_id: int) -> ChatParticipant:
    """
    Ensure the chat exists and the user is in it.

    Raises:
        NotFoundError: If the chat does not exist
        PermissionDeniedError: If the user is not a participant
    """
    await get_chat_model(session, chat_id)
    participant = await get_participant(session, chat_id, user_id)
    if participant is None:
        raise PermissionDeniedError("You are not a participant in this chat")
    return participant


async def _get_message_for_participant(session: AsyncSession, message_id: int, user_id: int) -> Message:
    message = await session.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message not found")
    if not await is_participant(session, message.chat_id, user_id):
        raise PermissionDeniedError("You are not a participant in this chat")
    return message


async def _require_group_admin(session: AsyncSession, chat_id: int, user_id: int) -> Chat:
    chat = await get_chat_model(session, chat_id)
    if chat.type != ChatType.GROUP.value:
        raise BadRequestError("This action is only available for group chats")
    if chat.created_by != user_id:
        raise PermissionDeniedError("Only the group admin can perform this action")
    return chat


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def _user_summary(user: Optional[User]) -> Optional[Dict]:
    if user is None:
        return None
    return {"id": user.id, "username": user.username, "avatar": user.avatar}


def _summarize_reactions(reactions: Iterable[MessageReaction]) -> List[Dict]:
    grouped: Dict[str, List[int]] = defaultdict(list)
    for reaction in sorted(reactions, key=lambda r: r.id):
        grouped[reaction.emoji].append(reaction.user_id)
    return [{"emoji": emoji, "count": len(users), "users": users} for emoji, users in grouped.items()]


async def _format_messages(session: AsyncSession, messages: List[Message], viewer_id: int) -> List[Dict]:
    """Batch-load everything needed to render messages for one viewer."""
    if not messages:
        return []
    message_ids = [m.id for m in messages]
    reply_ids = {m.reply_to_id for m in messages if m.reply_to_id}

    replies = {}
    if reply_ids:
        result = await session.execute(select(Message).where(Message.id.in_(reply_ids)))
        replies = {m.id: m for m in result.scalars().all()}

    users = await user_service.get_users_by_ids(
        session, {m.sender_id for m in messages} | {r.sender_id for r in replies.values()}
    )

    reactions = defaultdict(list)
    result = await session.execute(
        select(MessageReaction).where(MessageReaction.message_id.in_(message_ids))
    )
    for reaction in result.scalars().all():
        reactions[reaction.message_id].append(reaction)

    receipts = defaultdict(list)
    result = await session.execute(
        select(MessageReadReceipt)
        .where(MessageReadReceipt.message_id.in_(message_ids))
        .order_by(MessageReadReceipt.read_at, MessageReadReceipt.id)
    )
    for receipt in result.scalars().all():
        receipts[receipt.message_id].append(
            {"user_id": receipt.user_id, "read_at": isoformat(receipt.read_at)}
        )

    views = defaultdict(list)
    ephemeral_ids = [m.id for m in messages if m.is_ephemeral]
    if ephemeral_ids:
        result = await session.execute(
            select(EphemeralView).where(EphemeralView.message_id.in_(ephemeral_ids))
        )
        for view in result.scalars().all():
            views[view.message_id].append(view.viewer_id)

    formatted = []
    for message in messages:
        reply = replies.get(message.reply_to_id)
        viewed = viewer_id in views[message.id]
        hide_media = message.is_ephemeral and message.sender_id != viewer_id and viewed
        formatted.append(
            {
                "id": message.id,
                "chat_id": message.chat_id,
                "sender": _user_summary(users.get(message.sender_id)),
                "type": message.type,
                "content": message.content,
                "media_url": None if hide_media else message.media_url,
                "duration": message.duration,
                "waveform_data": message.waveform_data,
                "reply_to": {
                    "id": reply.id,
                    "type": reply.type,
                    "content": reply.content,
                    "sender": _user_summary(users.get(reply.sender_id)),
                } if reply else None,
                "is_ephemeral": message.is_ephemeral,
                "view_duration": message.view_duration,
                "viewed": viewed,
                "viewed_by": views[message.id] if message.sender_id == viewer_id else [],
                "reactions": _summarize_reactions(reactions[message.id]),
                "read_by": receipts[message.id],
                "created_at": isoformat(message.created_at),
            }
        )
    return formatted


async def _format_chat(session: AsyncSession, chat: Chat, user_id: int, participant: ChatParticipant) -> Dict:
    participant_ids = await get_participant_ids(session, chat.id)
    users = await user_service.get_users_by_ids(session, participant_ids)

    result = await session.execute(
        select(Message)
        .where(Message.chat_id == chat.id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    last_message = (await _format_messages(session, [last], user_id))[0] if last else None

    unread_query = select(func.count(Message.id)).where(
        Message.chat_id == chat.id, Message.sender_id != user_id
    )
    if participant.last_read_at is not None:
        unread_query = unread_query.where(Message.created_at > participant.last_read_at)
    unread_count = (await session.execute(unread_query)).scalar() or 0

    return {
        "id": chat.id,
        "type": chat.type,
        "name": chat.name,
        "description": chat.description,
        "created_by": chat.created_by,
        "participants": [_user_summary(users.get(pid)) for pid in participant_ids if pid in users],
        "last_message": last_message,
        "unread_count": unread_count,
        "created_at": isoformat(chat.created_at),
        "updated_at": isoformat(chat.updated_at),
    }


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


async def create_direct_chat(session: AsyncSession, user_id: int, other_user_id: int) -> Dict:
    """
    Get or create the direct chat between two users.

    Raises:
        BadRequestError: If both users are the same
        NotFoundError: If the other user does not exist
    """
    if user_id == other_user_id:
        raise BadRequestError("You cannot start a chat with yourself")
    await user_service.get_user_model(session, other_user_id)

    result = await session.execute(
        select(ChatParticipant.chat_id)
        .join(Chat, Chat.id == ChatParticipant.chat_id)
        .where(
            Chat.type == ChatType.DIRECT.value,
            ChatParticipant.user_id.in_([user_id, other_user_id]),
        )
        .group_by(ChatParticipant.chat_id)
        .having(func.count(func.distinct(ChatParticipant.user_id)) == 2)
        .limit(1)
    )
    existing_id = result.scalar_one_or_none()
    if existing_id is not None:
        chat = await get_chat_model(session, existing_id)
    else:
        chat = Chat(type=ChatType.DIRECT.value, created_by=user_id)
        session.add(chat)
        await session.flush()
        session.add_all([
            ChatParticipant(chat_id=chat.id, user_id=user_id),
            ChatParticipant(chat_id=chat.id, user_id=other_user_id),
        ])
        await session.flush()
        logger.info(f"Created direct chat {chat.id} between users {user_id} and {other_user_id}")

    participant = await get_participant(session, chat.id, user_id)
    return await _format_chat(session, chat, user_id, participant)


async def create_group_chat(
    session: AsyncSession,
    user_id: int,
    name: str,
    participant_ids: List[int],
    description: Optional[str] = None,
) -> Dict:
    """
    Create a group chat. The creator is the group admin and always a participant.

    Raises:
        NotFoundError: If any participant does not exist
    """
    member_ids = list(dict.fromkeys([user_id, *participant_ids]))
    users = await user_service.get_users_by_ids(session, member_ids)
    missing = [uid for uid in member_ids if uid not in users]
    if missing:
        raise NotFoundError(f"User(s) not found: {', '.join(str(m) for m in missing)}")

    chat = Chat(type=ChatType.GROUP.value, name=name, description=description, created_by=user_id)
    session.add(chat)
    await session.flush()
    session.add_all([ChatParticipant(chat_id=chat.id, user_id=uid) for uid in member_ids])
    await session.flush()
    logger.info(f"User {user_id} created group chat {chat.id} with {len(member_ids)} participants")

    participant = await get_participant(session, chat.id, user_id)
    return await _format_chat(session, chat, user_id, participant)


async def list_chats(session: AsyncSession, user_id: int) -> List[Dict]:
    """The user's chats, most recent activity first."""
    result = await session.execute(
        select(Chat, ChatParticipant)
        .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
        .where(ChatParticipant.user_id == user_id)
        .order_by(Chat.updated_at.desc(), Chat.id.desc())
    )
    return [await _format_chat(session, chat, user_id, participant) for chat, participant in result.all()]


async def get_chat(session: AsyncSession, chat_id: int, user_id: int) -> Dict:
    participant = await require_participant(session, chat_id, user_id)
    chat = await get_chat_model(session, chat_id)
    return await _format_chat(session, chat, user_id, participant)


async def update_chat(session: AsyncSession, chat_id: int, user_id: int, updates: Dict) -> Dict:
    chat = await _require_group_admin(session, chat_id, user_id)
    if updates.get("name") is not None:
        chat.name = updates["name"]
    if "description" in updates:
        chat.description = updates["description"]
    chat.updated_at = utcnow()
    await session.flush()
    participant = await get_participant(session, chat_id, user_id)
    return await _format_chat(session, chat, user_id, participant)


async def get_participants(session: AsyncSession, chat_id: int, user_id: int) -> List[Dict]:
    await require_participant(session, chat_id, user_id)
    chat = await get_chat_model(session, chat_id)
    participant_ids = await get_participant_ids(session, chat_id)
    users = await user_service.get_users_by_ids(session, participant_ids)
    return [
        {**_user_summary(users[pid]), "is_admin": chat.type == ChatType.GROUP.value and pid == chat.created_by}
        for pid in participant_ids
        if pid in users
    ]


async def add_participants(session: AsyncSession, chat_id: int, user_id: int, participant_ids: List[int]) -> List[Dict]:
    """
    Add users to a group chat; users already in it are skipped.

    Raises:
        BadRequestError: Not a group chat
        PermissionDeniedError: Caller is not the group admin
        NotFoundError: Unknown user
    """
    await _require_group_admin(session, chat_id, user_id)
    users = await user_service.get_users_by_ids(session, participant_ids)
    missing = [uid for uid in participant_ids if uid not in users]
    if missing:
        raise NotFoundError(f"User(s) not found: {', '.join(str(m) for m in missing)}")

    existing = set(await get_participant_ids(session, chat_id))
    for uid in dict.fromkeys(participant_ids):
        if uid not in existing:
            session.add(ChatParticipant(chat_id=chat_id, user_id=uid))
    await session.flush()
    return await get_participants(session, chat_id, user_id)


async def remove_participant(session: AsyncSession, chat_id: int, user_id: int, target_user_id: int) -> None:
    """
    Remove a participant from a group chat. The group admin may remove anyone;
    other participants may only remove themselves. When the admin leaves, the
    longest-standing remaining participant becomes admin.
    """
    chat = await get_chat_model(session, chat_id)
    if chat.type != ChatType.GROUP.value:
        raise BadRequestError("This action is only available for group chats")
    await require_participant(session, chat_id, user_id)
    if target_user_id != user_id and chat.created_by != user_id:
        raise PermissionDeniedError("Only the group admin can remove other participants")

    target = await get_participant(session, chat_id, target_user_id)
    if target is None:
        raise NotFoundError("User is not a participant in this chat")
    await session.delete(target)
    await session.flush()

    if target_user_id == chat.created_by:
        remaining = await get_participant_ids(session, chat_id)
        chat.created_by = remaining[0] if remaining else None
        await session.flush()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


async def get_messages(
    session: AsyncSession, chat_id: int, user_id: int, page: int = 1, limit: int = MESSAGE_PAGE_SIZE
) -> Dict:
    """
    A page of messages, newest first.

    Args:
        session: Database session
        chat_id: Chat ID
        user_id: Requesting participant
        page: 1-based page number
        limit: Page size (capped at MESSAGE_PAGE_SIZE_MAX)

    Returns:
        Dict with messages, page, limit and has_more
    """
    await require_participant(session, chat_id, user_id)
    page = max(page, 1)
    limit = max(1, min(limit, MESSAGE_PAGE_SIZE_MAX))

    result = await session.execute(
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .offset((page - 1) * limit)
        .limit(limit + 1)
    )
    messages = list(result.scalars().all())
    has_more = len(messages) > limit
    return {
        "messages": await _format_messages(session, messages[:limit], user_id),
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


async def send_message(session: AsyncSession, chat_id: int, user_id: int, data: Dict) -> Dict:
    """
    Persist a message and broadcast `newMessage` to the chat.

    Args:
        session: Database session
        chat_id: Chat ID
        user_id: Sender
        data: type, content, media_url, duration, waveform_data, reply_to_id,
              is_ephemeral, view_duration

    Raises:
        PermissionDeniedError: Sender is not a participant
        BadRequestError: Invalid media URL, reply target or ephemeral settings
    """
    await require_participant(session, chat_id, user_id)
    message_type = MessageType(data.get("type") or MessageType.TEXT.value)
    media_url = data.get("media_url")
    is_ephemeral = bool(data.get("is_ephemeral"))

    if message_type == MessageType.TEXT:
        if not (data.get("content") or "").strip():
            raise BadRequestError("Text messages require content")
    else:
        if not media_url:
            raise BadRequestError(f"{message_type.value} messages require media_url")
        if s3_service.is_configured() and not s3_service.validate_media_url(media_url):
            raise BadRequestError("Invalid media URL")

    if is_ephemeral and message_type not in (MessageType.IMAGE, MessageType.VIDEO):
        raise BadRequestError("Only image and video messages can be ephemeral")

    reply_to_id = data.get("reply_to_id")
    if reply_to_id is not None:
        reply = await session.get(Message, reply_to_id)
        if reply is None or reply.chat_id != chat_id:
            raise BadRequestError("Reply target must be a message in this chat")

    message = Message(
        chat_id=chat_id,
        sender_id=user_id,
        type=message_type.value,
        content=data.get("content"),
        media_url=media_url,
        duration=data.get("duration") if message_type == MessageType.VOICE else None,
        waveform_data=data.get("waveform_data") if message_type == MessageType.VOICE else None,
        reply_to_id=reply_to_id,
        is_ephemeral=is_ephemeral,
        view_duration=data.get("view_duration") if is_ephemeral else None,
    )
    session.add(message)

    chat = await get_chat_model(session, chat_id)
    chat.updated_at = utcnow()
    await session.flush()

    formatted = (await _format_messages(session, [message], user_id))[0]
    await notify_chat_members(chat_id, await get_participant_ids(session, chat_id), "newMessage", formatted)
    return formatted


async def mark_chat_read(session: AsyncSession, chat_id: int, user_id: int) -> Dict:
    """Mark everything in the chat as read for the user (resets unread count)."""
    participant = await require_participant(session, chat_id, user_id)
    participant.last_read_at = utcnow()
    await session.flush()
    return {"chat_id": chat_id, "last_read_at": isoformat(participant.last_read_at)}


async def mark_messages_read(
    session: AsyncSession, chat_id: int, user_id: int, message_ids: List[int]
) -> Dict:
    """
    Create read receipts for messages in the chat sent by others and not yet
    read by the user, then broadcast `messagesRead`.

    Returns:
        Dict with the ids newly marked read
    """
    participant = await require_participant(session, chat_id, user_id)

    already_read = select(MessageReadReceipt.message_id).where(MessageReadReceipt.user_id == user_id)
    result = await session.execute(
        select(Message.id).where(
            Message.id.in_(set(message_ids)),
            Message.chat_id == chat_id,
            Message.sender_id != user_id,
            Message.id.not_in(already_read),
        )
    )
    to_mark = sorted(result.scalars().all())

    read_at = utcnow()
    session.add_all([MessageReadReceipt(message_id=mid, user_id=user_id, read_at=read_at) for mid in to_mark])
    participant.last_read_at = read_at
    await session.flush()

    if to_mark:
        await notify_chat_members(
            chat_id,
            await get_participant_ids(session, chat_id),
            "messagesRead",
            {"chat_id": chat_id, "user_id": user_id, "message_ids": to_mark, "read_at": isoformat(read_at)},
        )
    return {"chat_id": chat_id, "message_ids": to_mark, "read_at": isoformat(read_at)}


async def get_read_receipts(session: AsyncSession, message_id: int, user_id: int) -> List[Dict]:
    await _get_message_for_participant(session, message_id, user_id)
    result = await session.execute(
        select(MessageReadReceipt, User)
        .join(User, User.id == MessageReadReceipt.user_id)
        .where(MessageReadReceipt.message_id == message_id)
        .order_by(MessageReadReceipt.read_at, MessageReadReceipt.id)
    )
    return [
        {"user": _user_summary(user), "read_at": isoformat(receipt.read_at)}
        for receipt, user in result.all()
    ]


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------


async def add_reaction(session: AsyncSession, message_id: int, user_id: int, emoji: str) -> Dict:
    """
    React to a message with an emoji.

    Raises:
        ConflictError: If the user already reacted with this emoji
    """
    message = await _get_message_for_participant(session, message_id, user_id)
    result = await session.execute(
        select(MessageReaction.id).where(
            and_(
                MessageReaction.message_id == message_id,
                MessageReaction.user_id == user_id,
                MessageReaction.emoji == emoji,
            )
        )
    )
    if result.first() is not None:
        raise ConflictError("You already reacted with this emoji")

    reaction = MessageReaction(message_id=message_id, user_id=user_id, emoji=emoji)
    session.add(reaction)
    await session.flush()

    payload = {
        "id": reaction.id,
        "message_id": message_id,
        "chat_id": message.chat_id,
        "user_id": user_id,
        "emoji": emoji,
        "created_at": isoformat(reaction.created_at),
    }
    await notify_chat_members(
        message.chat_id, await get_participant_ids(session, message.chat_id), "reactionAdded", payload
    )
    return payload


async def remove_reaction(session: AsyncSession, message_id: int, user_id: int, emoji: str) -> None:
    message = await _get_message_for_participant(session, message_id, user_id)
    result = await session.execute(
        delete(MessageReaction).where(
            MessageReaction.message_id == message_id,
            MessageReaction.user_id == user_id,
            MessageReaction.emoji == emoji,
        )
    )
    if result.rowcount == 0:
        raise NotFoundError("Reaction not found")

    await notify_chat_members(
        message.chat_id,
        await get_participant_ids(session, message.chat_id),
        "reactionRemoved",
        {"message_id": message_id, "chat_id": message.chat_id, "user_id": user_id, "emoji": emoji},
    )


async def get_reactions(session: AsyncSession, message_id: int, user_id: int) -> List[Dict]:
    await _get_message_for_participant(session, message_id, user_id)
    result = await session.execute(
        select(MessageReaction).where(MessageReaction.message_id == message_id)
    )
    return _summarize_reactions(result.scalars().all())


# ---------------------------------------------------------------------------
# Ephemeral media
# ---------------------------------------------------------------------------


async def view_ephemeral_message(session: AsyncSession, message_id: int, user_id: int) -> Dict:
    """
    Record a one-time view of an ephemeral message and hand the media to the
    viewer. Later reads of the message hide media_url from this viewer; the
    display countdown itself runs on the client.

    Raises:
        BadRequestError: Not ephemeral, or the sender is viewing their own message
        ConflictError: Already viewed by this user
    """
    message = await _get_message_for_participant(session, message_id, user_id)
    if not message.is_ephemeral:
        raise BadRequestError("Message is not ephemeral")
    if message.sender_id == user_id:
        raise BadRequestError("You cannot view your own ephemeral message")

    result = await session.execute(
        select(EphemeralView.id).where(
            EphemeralView.message_id == message_id, EphemeralView.viewer_id == user_id
        )
    )
    if result.first() is not None:
        raise ConflictError("Message has already been viewed")

    view = EphemeralView(message_id=message_id, viewer_id=user_id, viewed_at=utcnow())
    session.add(view)
    await session.flush()

    viewed_at = isoformat(view.viewed_at)
    await notify_chat_members(
        message.chat_id,
        await get_participant_ids(session, message.chat_id),
        "ephemeralViewed",
        {"message_id": message_id, "chat_id": message.chat_id, "viewed_by": user_id, "viewed_at": viewed_at},
    )
    return {
        "message_id": message_id,
        "media_url": message.media_url,
        "view_duration": message.view_duration,
        "viewed_at": viewed_at,
    }
