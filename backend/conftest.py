"""Shared fixtures: in-memory database, recording gateway, chat drivers."""
import asyncio
import itertools
from datetime import timedelta
from typing import Dict, List, NamedTuple, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from roster import models  # noqa: F401 - register models
from roster.db.base import Base
from roster.db.session import make_session_factory
from roster.models.availability import Availability
from roster.models.enums import Ict, RoleType, UsrType
from roster.models.user import User
from roster.services.scheduling import local_today
from roster.telegram.bot import build_engine
from roster.telegram.engine import ButtonEvent, MessageEvent


class SentMessage(NamedTuple):
    chat_id: int
    msg_id: int
    text: str
    buttons: Optional[list]


class FakeGateway:
    """Records every call; message ids count up from 100."""

    def __init__(self):
        self.sent: List[SentMessage] = []
        self.edits: List[SentMessage] = []
        self.deleted: List[Tuple[int, int]] = []
        self.removed: List[Tuple[int, int]] = []
        self.answers: List[Tuple[str, Optional[str]]] = []
        self.fail_chats = set()
        self.messages: Dict[Tuple[int, int], SentMessage] = {}
        self.latest: Dict[int, int] = {}
        self._ids = itertools.count(100)

    async def send_message(self, chat_id, text, buttons=None):
        await asyncio.sleep(0)
        if chat_id in self.fail_chats:
            return None
        message = SentMessage(chat_id, next(self._ids), text, buttons)
        self.sent.append(message)
        self.messages[(chat_id, message.msg_id)] = message
        self.latest[chat_id] = message.msg_id
        return message.msg_id

    async def edit_message(self, chat_id, message_id, text, buttons=None):
        await asyncio.sleep(0)
        message = SentMessage(chat_id, message_id, text, buttons)
        self.edits.append(message)
        self.messages[(chat_id, message_id)] = message
        self.latest[chat_id] = message_id
        return message_id

    async def delete_message(self, chat_id, message_id):
        self.deleted.append((chat_id, message_id))
        return True

    async def remove_buttons(self, chat_id, message_id):
        self.removed.append((chat_id, message_id))
        return True

    async def answer_button_press(self, interaction_id, text=None):
        self.answers.append((interaction_id, text))
        return True

    # Helpers for assertions

    def texts(self, chat_id) -> List[str]:
        return [m.text for m in self.sent if m.chat_id == chat_id]

    def screen(self, chat_id) -> SentMessage:
        return self.messages[(chat_id, self.latest[chat_id])]

    def labels(self, chat_id) -> List[str]:
        buttons = self.screen(chat_id).buttons or []
        return [label for row in buttons for label, _ in row]

    def button_data(self, chat_id, label) -> str:
        """Payload of the first button on the chat's latest screen whose label starts with ``label``."""
        for row in self.screen(chat_id).buttons or []:
            for text, data in row:
                if text == label or text.startswith(label):
                    return data
        raise AssertionError(f"No button {label!r} in {self.labels(chat_id)}")


class ChatDriver:
    """Sends events for one user in one chat."""

    _interactions = itertools.count(1)

    def __init__(self, engine, gateway, chat_id, user_id=None, private=True, username="tester"):
        self.engine = engine
        self.gateway = gateway
        self.chat_id = chat_id
        self.user_id = chat_id if user_id is None else user_id
        self.private = private
        self.username = username

    @property
    def state(self):
        return self.engine.sessions.get(self.chat_id)

    async def say(self, text):
        return await self.engine.handle_message(MessageEvent(
            chat_id=self.chat_id,
            user_id=self.user_id,
            username=self.username,
            text=text,
            private=self.private,
        ))

    async def press_data(self, data):
        return await self.engine.handle_button(ButtonEvent(
            chat_id=self.chat_id,
            user_id=self.user_id,
            username=self.username,
            data=data,
            interaction_id=str(next(self._interactions)),
            private=self.private,
        ))

    async def press(self, label):
        return await self.press_data(self.gateway.button_data(self.chat_id, label))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dialogue(gateway, session_factory):
    return build_engine(gateway, session_factory, page_size=8)


@pytest.fixture
def chat(dialogue, gateway):
    def make(chat_id, user_id=None, private=True, username="tester"):
        return ChatDriver(dialogue, gateway, chat_id, user_id=user_id, private=private, username=username)
    return make


@pytest.fixture
def make_user(db):
    def make(tele_id, ops_name, admin=False, role_type=RoleType.PILOT, usr_type=UsrType.ACTIVE, name=None):
        user = User(
            tele_id=tele_id,
            name=name or ops_name.title(),
            ops_name=ops_name,
            usr_type=usr_type,
            role_type=role_type,
            admin=admin,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return make


@pytest.fixture
def make_availability(db):
    def make(user, days_ahead, ict_type=Ict.LIVE, planned=False, remarks=None):
        availability = Availability(
            user_id=user.id,
            avail=local_today() + timedelta(days=days_ahead),
            ict_type=ict_type,
            planned=planned,
            remarks=remarks,
        )
        db.add(availability)
        db.commit()
        db.refresh(availability)
        return availability
    return make
