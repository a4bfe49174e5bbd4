import random
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from db import Base

MESSAGE_TOMBSTONE = "[Message deleted]"


def generate_account_id():
    """Generate a 10-digit random unique number."""
    return int("".join(str(random.randint(1, 9)) for _ in range(10)))


# =================================
#  Users Table (owned by the accounts service; read-only here)
# =================================
class User(Base):
    __tablename__ = "users"

    account_id = Column(BigInteger, primary_key=True, unique=True, index=True, nullable=False, default=generate_account_id)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    profile_pic_url = Column(String, nullable=True)
    is_admin = Column(Boolean, default=False)
    sign_up_date = Column(DateTime, default=datetime.utcnow, nullable=False)


# =================================
#  Blocks Table
# =================================
class Block(Base):
    __tablename__ = "blocked_users"

    id = Column(Integer, primary_key=True, index=True)
    blocker_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    blocked_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("blocker_id", "blocked_id", name="uq_blocks_blocker_blocked"),
    )


# =================================
#  Groups Tables (membership is managed elsewhere; read-only here)
# =================================
class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_by = Column(BigInteger, ForeignKey("users.account_id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    members = relationship("GroupMember", back_populates="group")


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    role = Column(String, nullable=False, default="member")  # owner, admin, member
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    group = relationship("Group", back_populates="members")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )


# =================================
#  Direct Messages Table
# =================================
class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    receiver_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    content = Column(Text, nullable=True)  # Fernet ciphertext when is_encrypted
    media_url = Column(String, nullable=True)
    message_type = Column(String, nullable=False, default="text")
    reply_to_id = Column(Integer, ForeignKey("messages.id"), nullable=True)
    is_encrypted = Column(Boolean, nullable=False, default=False)

    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by_sender = Column(Boolean, nullable=False, default=False)
    deleted_by_receiver = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])


# =================================
#  Group Messages Tables
# =================================
class GroupMessage(Base):
    __tablename__ = "group_messages"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    sender_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    content = Column(Text, nullable=True)
    media_url = Column(String, nullable=True)
    message_type = Column(String, nullable=False, default="text")
    reply_to_id = Column(Integer, ForeignKey("group_messages.id"), nullable=True)
    is_encrypted = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    sender = relationship("User")
    reply_to = relationship("GroupMessage", remote_side=[id])


class PinnedGroupMessage(Base):
    __tablename__ = "group_message_pins"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("group_messages.id"), nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    pinned_by = Column(BigInteger, ForeignKey("users.account_id"), nullable=False)
    pinned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    message = relationship("GroupMessage")

    __table_args__ = (
        UniqueConstraint("message_id", "group_id", name="uq_group_message_pins_message_group"),
    )


# =================================
#  Group Presence Table
# =================================
class GroupMemberPresence(Base):
    __tablename__ = "member_presence"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    is_online = Column(Boolean, nullable=False, default=False)
    last_active = Column(DateTime, default=datetime.utcnow, nullable=False)
    session_id = Column(String, nullable=True)

    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_member_presence_group_user"),
    )


# =================================
#  Calls Table
# =================================
class Call(Base):
    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    caller_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    receiver_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    call_type = Column(String, nullable=False, default="voice")  # voice, video
    status = Column(String, nullable=False, default="ringing", index=True)  # ringing, connected, rejected, ended, missed
    caller_peer_id = Column(String, nullable=False)
    receiver_peer_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # whole seconds, set on terminal transition

    caller = relationship("User", foreign_keys=[caller_id])
    receiver = relationship("User", foreign_keys=[receiver_id])
