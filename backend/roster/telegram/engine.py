"""
Dialogue engine: one finite-state conversation per chat.

Routing:
- Commands (``/name args``) are matched first and may start a flow from
  any state. Access is checked against the users table.
- Free text goes to the message route of the chat's current state class.
- Button presses go to the button route of the current state class; the
  payload is decoded against the state's session token before the
  handler sees it.
- An event of the wrong kind gets a nudge and leaves the state alone.

Handlers are ``async (ctx, state, payload) -> State | None``; None keeps
the current state. Store failures anywhere in a handler end in
``ErrorState``, and the next event in that state resets the chat to
``Start``.

Handlers reach the database only through ``await ctx.store(fn, ...)``,
which runs the synchronous service call on a worker thread.
"""
import enum
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roster.core.audit import AuditLog
from roster.core.config import settings
from roster.core.exceptions import GatewayError, StoreError
from roster.db.session import run_blocking
from roster.schemas.user import UserSchema
from roster.services.users import get_apply_by_tele_id, get_user_by_tele_id
from roster.telegram.callbacks import CallbackAction, CallbackActions
from roster.telegram.gateway import Buttons
from roster.telegram.session_store import SessionStore
from roster.telegram.states import ErrorState, Screen, Start, State

logger = logging.getLogger(__name__)

PRESS_BUTTON_PROMPT = "Please press a button, or type /cancel to abort."
TYPE_REPLY_PROMPT = "Please type your reply, or type /cancel to abort."
DATABASE_ERROR = "Error occurred accessing the database"
ERROR_RESET = "Error occurred, returning to start!"
STALE_BUTTON = "This button is no longer active."

T = TypeVar("T")


def load_user(db: Session, tele_id: int) -> Optional[UserSchema]:
    user = get_user_by_tele_id(db, tele_id)
    return UserSchema.model_validate(user) if user else None


class Access(str, enum.Enum):
    PUBLIC = "public"
    REGISTERED = "registered"
    ADMIN = "admin"


class MessageEvent(BaseModel):
    chat_id: int
    user_id: int
    username: Optional[str] = None
    text: str
    private: bool = True
    message_id: Optional[int] = None

    class Config:
        frozen = True


class ButtonEvent(BaseModel):
    chat_id: int
    user_id: int
    username: Optional[str] = None
    data: str
    interaction_id: str
    private: bool = True
    message_id: Optional[int] = None

    class Config:
        frozen = True


class HandlerContext:
    """What a handler may touch while it runs for one event."""

    def __init__(
        self,
        db: Session,
        gateway,
        chat_id: int,
        user_id: int,
        username: Optional[str] = None,
        private: bool = True,
        page_size: Optional[int] = None,
        interaction_id: Optional[str] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.chat_id = chat_id
        self.user_id = user_id
        self.username = username
        self.private = private
        self.page_size = page_size or settings.PAGE_SIZE
        self.interaction_id = interaction_id
        self.answered = False
        self.handoffs: List[Tuple[int, State]] = []
        # The registered user behind this event; set by the engine before dispatch
        self.user: Optional[UserSchema] = None

    async def store(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """``fn(self.db, *args, **kwargs)`` on a worker thread."""
        return await run_blocking(fn, self.db, *args, **kwargs)

    async def send(self, text: str, buttons: Optional[Buttons] = None, chat_id: Optional[int] = None) -> int:
        """Send a screen message; its id is needed, so failure is a ``GatewayError``."""
        target = self.chat_id if chat_id is None else chat_id
        msg_id = await self.gateway.send_message(target, text, buttons)
        if msg_id is None:
            raise GatewayError(f"Could not send screen to chat_id={target}")
        return msg_id

    async def show(self, msg_id: int, text: str, buttons: Optional[Buttons] = None, chat_id: Optional[int] = None) -> int:
        """Edit a screen in place. Returns the id to use from now on."""
        target = self.chat_id if chat_id is None else chat_id
        new_id = await self.gateway.edit_message(target, msg_id, text, buttons)
        if new_id is None:
            raise GatewayError(f"Could not show screen in chat_id={target}")
        return new_id

    async def reply(self, text: str, chat_id: Optional[int] = None) -> Optional[int]:
        """Plain message, best effort."""
        return await self.gateway.send_message(self.chat_id if chat_id is None else chat_id, text)

    async def answer(self, text: Optional[str] = None) -> None:
        if self.interaction_id is not None and not self.answered:
            self.answered = True
            await self.gateway.answer_button_press(self.interaction_id, text)

    def handoff(self, chat_id: int, state: State) -> None:
        """Set another chat's state once this event is done."""
        self.handoffs.append((chat_id, state))


MessageHandler = Callable[[HandlerContext, State, MessageEvent], Awaitable[Optional[State]]]
ButtonHandler = Callable[[HandlerContext, State, CallbackAction], Awaitable[Optional[State]]]
CommandHandler = Callable[[HandlerContext, State, str], Awaitable[Optional[State]]]


class Command:
    def __init__(
        self,
        name: str,
        handler: CommandHandler,
        access: Access = Access.PUBLIC,
        private: bool = False,
        description: str = "",
    ):
        self.name = name
        self.handler = handler
        self.access = access
        self.private = private
        self.description = description


def parse_command(text: str, bot_username: Optional[str] = None) -> Optional[Tuple[str, str]]:
    """``/plan@RosterBot ALPHA`` -> ("plan", "ALPHA"). None for non-commands."""
    text = text.strip()
    if not text.startswith("/") or len(text) < 2:
        return None
    parts = text.split(maxsplit=1)
    name, _, mention = parts[0][1:].partition("@")
    if mention and bot_username and mention.lower() != bot_username.lower():
        return None
    return name.lower(), parts[1].strip() if len(parts) > 1 else ""


class DialogueEngine:
    def __init__(
        self,
        gateway,
        session_factory: Callable[[], Session],
        sessions: Optional[SessionStore] = None,
        bot_username: Optional[str] = None,
        page_size: Optional[int] = None,
    ):
        self.gateway = gateway
        self.session_factory = session_factory
        self.sessions = sessions or SessionStore()
        self.bot_username = bot_username
        self.page_size = page_size or settings.PAGE_SIZE
        self.commands: Dict[str, Command] = {}
        self._message_routes: Dict[Type[State], MessageHandler] = {}
        self._button_routes: Dict[Type[State], Tuple[CallbackActions, ButtonHandler]] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def command(
        self,
        name: str,
        handler: CommandHandler,
        access: Access = Access.PUBLIC,
        private: bool = False,
        description: str = "",
    ) -> None:
        self.commands[name] = Command(name, handler, access, private, description)

    def on_message(self, state_cls: Type[State], handler: MessageHandler) -> None:
        self._message_routes[state_cls] = handler

    def on_button(self, state_cls: Type[Screen], codec: CallbackActions, handler: ButtonHandler) -> None:
        self._button_routes[state_cls] = (codec, handler)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_message(self, event: MessageEvent) -> State:
        ctx = self._context(event)
        return await self._handle(ctx, event, self._dispatch_message)

    async def handle_button(self, event: ButtonEvent) -> State:
        ctx = self._context(event, interaction_id=event.interaction_id)
        try:
            return await self._handle(ctx, event, self._dispatch_button)
        finally:
            await ctx.answer()

    def _context(self, event, interaction_id: Optional[str] = None) -> HandlerContext:
        return HandlerContext(
            db=self.session_factory(),
            gateway=self.gateway,
            chat_id=event.chat_id,
            user_id=event.user_id,
            username=event.username,
            private=event.private,
            page_size=self.page_size,
            interaction_id=interaction_id,
        )

    async def _handle(self, ctx: HandlerContext, event, dispatch) -> State:
        async with self.sessions.lock(ctx.chat_id):
            state = self.sessions.get(ctx.chat_id)
            try:
                next_state = await self._guarded(ctx, state, event, dispatch)
            finally:
                await run_blocking(ctx.db.close)
            if next_state is not None:
                if type(next_state) is not type(state):
                    logger.debug(
                        f"[ENGINE] chat_id={ctx.chat_id}: {type(state).__name__} -> {type(next_state).__name__}"
                    )
                self.sessions.set(ctx.chat_id, next_state)
            current = self.sessions.get(ctx.chat_id)

        for chat_id, handed in ctx.handoffs:
            async with self.sessions.lock(chat_id):
                logger.debug(f"[ENGINE] chat_id={ctx.chat_id} handed {type(handed).__name__} to chat_id={chat_id}")
                self.sessions.set(chat_id, handed)
        return current

    async def _guarded(self, ctx: HandlerContext, state: State, event, dispatch) -> Optional[State]:
        try:
            ctx.user = await ctx.store(load_user, ctx.user_id)
            return await dispatch(ctx, state, event)
        except (StoreError, SQLAlchemyError) as e:
            logger.error(
                f"[ENGINE] Store failure in chat_id={ctx.chat_id} ({type(state).__name__}): {e}",
                exc_info=not isinstance(e, StoreError),
            )
            await run_blocking(ctx.db.rollback)
            await ctx.reply(DATABASE_ERROR)
            return ErrorState()
        except GatewayError as e:
            logger.error(f"[ENGINE] Gateway failure in chat_id={ctx.chat_id} ({type(state).__name__}): {e}")
            return ErrorState()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch_message(self, ctx: HandlerContext, state: State, event: MessageEvent) -> Optional[State]:
        if isinstance(state, ErrorState):
            await ctx.reply(ERROR_RESET)
            return Start()

        parsed = parse_command(event.text, self.bot_username)
        if parsed is not None:
            return await self._run_command(ctx, state, *parsed)

        handler = self._message_routes.get(type(state))
        if handler is None:
            if type(state) in self._button_routes:
                await ctx.reply(PRESS_BUTTON_PROMPT)
            else:
                logger.debug(f"[ENGINE] Ignoring text in chat_id={ctx.chat_id} ({type(state).__name__})")
            return None
        return await handler(ctx, state, event)

    async def _dispatch_button(self, ctx: HandlerContext, state: State, event: ButtonEvent) -> Optional[State]:
        if isinstance(state, ErrorState):
            await ctx.answer()
            await ctx.reply(ERROR_RESET)
            return Start()

        route = self._button_routes.get(type(state))
        if route is None:
            if type(state) in self._message_routes:
                await ctx.answer()
                await ctx.reply(TYPE_REPLY_PROMPT)
            else:
                await ctx.answer(STALE_BUTTON)
            return None

        codec, handler = route
        action = codec.decode(event.data, state.token)
        if action is None:
            logger.info(
                f"[ENGINE] Rejected stale or foreign button in chat_id={ctx.chat_id} ({type(state).__name__})"
            )
            await ctx.answer(STALE_BUTTON)
            return None

        next_state = await handler(ctx, state, action)
        await ctx.answer()
        return next_state

    async def _run_command(self, ctx: HandlerContext, state: State, name: str, args: str) -> Optional[State]:
        command = self.commands.get(name)
        if command is None:
            await ctx.reply(f"Unknown command /{name}. Type /help to see the available commands.")
            return None

        if command.private and not ctx.private:
            await ctx.reply("Please use this command in a private chat with the bot.")
            return None

        if command.access is not Access.PUBLIC:
            user = ctx.user
            if user is None:
                if await ctx.store(get_apply_by_tele_id, ctx.user_id):
                    await ctx.reply("Your registration is pending approval.")
                else:
                    await ctx.reply("You are not registered. Use /register in a private chat with the bot.")
                return None
            if command.access is Access.ADMIN and not user.admin:
                AuditLog.log_access_denied(name, ctx.user_id, "Not admin")
                await ctx.reply("This command is only available to admins.")
                return None

        logger.info(f"[ENGINE] /{name} from user_id={ctx.user_id} in chat_id={ctx.chat_id}")
        next_state = await command.handler(ctx, state, args)

        # Leaving a screen: its buttons would only ever decode as stale
        if isinstance(state, Screen) and next_state is not None:
            if not isinstance(next_state, Screen) or next_state.msg_id != state.msg_id:
                await self.gateway.remove_buttons(ctx.chat_id, state.msg_id)
        return next_state

    def visible_commands(self, user: Optional[UserSchema]) -> List[Command]:
        """Commands a user can run, for /help."""
        visible = []
        for command in self.commands.values():
            if command.access is Access.REGISTERED and user is None:
                continue
            if command.access is Access.ADMIN and (user is None or not user.admin):
                continue
            visible.append(command)
        return visible
