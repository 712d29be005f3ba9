"""
Telegram Bot API wrapper used by the dialogue engine and the notifier.

Every call logs and swallows ``TelegramError`` into a None/False result.
Editing is best effort: when Telegram refuses an edit (message too old,
deleted by the user), the old message is deleted and a new one is sent;
the returned id is the one to edit next time.
"""
import logging
from typing import List, Optional, Sequence, Tuple

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import BadRequest, TelegramError

logger = logging.getLogger(__name__)

# Rows of (label, callback_data)
Buttons = Sequence[Sequence[Tuple[str, str]]]


def build_markup(buttons: Optional[Buttons]) -> Optional[InlineKeyboardMarkup]:
    if not buttons:
        return None
    rows: List[List[InlineKeyboardButton]] = [
        [InlineKeyboardButton(text, callback_data=data) for text, data in row]
        for row in buttons
        if row
    ]
    return InlineKeyboardMarkup(rows)


class TelegramGateway:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_message(self, chat_id: int, text: str, buttons: Optional[Buttons] = None) -> Optional[int]:
        try:
            message = await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                reply_markup=build_markup(buttons),
            )
            return message.message_id
        except TelegramError as e:
            logger.error(f"[GATEWAY] Failed to send message to chat_id={chat_id}: {e}")
            return None

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        buttons: Optional[Buttons] = None,
    ) -> Optional[int]:
        try:
            await self.bot.edit_message_text(
                chat_id=chat_id,
                message_id=message_id,
                text=text,
                reply_markup=build_markup(buttons),
            )
            return message_id
        except BadRequest as e:
            if "message is not modified" in str(e).lower():
                return message_id
            logger.warning(f"[GATEWAY] Edit of message {message_id} in chat_id={chat_id} failed: {e}")
        except TelegramError as e:
            logger.warning(f"[GATEWAY] Edit of message {message_id} in chat_id={chat_id} failed: {e}")

        await self.delete_message(chat_id, message_id)
        new_id = await self.send_message(chat_id, text, buttons)
        if new_id is not None:
            logger.info(f"[GATEWAY] Replaced message {message_id} with {new_id} in chat_id={chat_id}")
        return new_id

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
            return True
        except TelegramError as e:
            logger.warning(f"[GATEWAY] Failed to delete message {message_id} in chat_id={chat_id}: {e}")
            return False

    async def remove_buttons(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.bot.edit_message_reply_markup(chat_id=chat_id, message_id=message_id, reply_markup=None)
            return True
        except TelegramError as e:
            logger.debug(f"[GATEWAY] Failed to remove buttons from message {message_id}: {e}")
            return False

    async def answer_button_press(self, interaction_id: str, text: Optional[str] = None) -> bool:
        try:
            await self.bot.answer_callback_query(callback_query_id=interaction_id, text=text)
            return True
        except TelegramError as e:
            logger.warning(f"[GATEWAY] Failed to answer callback query {interaction_id}: {e}")
            return False
