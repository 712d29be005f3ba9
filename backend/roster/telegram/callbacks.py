"""
Button payloads.

Every screen declares the buttons it can render as a closed set of
``CallbackAction`` models bundled into a ``CallbackActions`` codec. The
payload Telegram carries back is

    urlsafe_base64(json([namespace, session_token, tag, *fields]))

with padding stripped. ``decode`` checks the namespace and the session
token of the screen currently shown, so presses on buttons from an older
render, another screen or another chat come back as ``None``.
"""
import base64
import binascii
import json
import logging
import secrets
import string
from typing import ClassVar, Dict, Optional, Type

from pydantic import BaseModel, ValidationError

from roster.core.config import settings
from roster.core.exceptions import CallbackDataTooLong

logger = logging.getLogger(__name__)

# Telegram rejects callback_data longer than 64 bytes
MAX_CALLBACK_DATA_BYTES = 64

TOKEN_ALPHABET = string.ascii_letters + string.digits


def generate_token(length: Optional[int] = None) -> str:
    """Fresh session token for one render of a screen."""
    length = length or settings.CALLBACK_TOKEN_LENGTH
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


class CallbackAction(BaseModel):
    """One button. Subclasses set ``tag`` and may declare scalar fields."""
    tag: ClassVar[str]

    class Config:
        frozen = True
        extra = "forbid"


class CallbackActions:
    """Codec for one screen's action set."""

    def __init__(self, namespace: str, *actions: Type[CallbackAction]):
        self.namespace = namespace
        self._actions: Dict[str, Type[CallbackAction]] = {}
        for action in actions:
            if action.tag in self._actions:
                raise ValueError(f"Duplicate callback tag '{action.tag}' in '{namespace}'")
            self._actions[action.tag] = action

    def __contains__(self, action_cls) -> bool:
        return self._actions.get(getattr(action_cls, "tag", None)) is action_cls

    def encode(self, action: CallbackAction, session_token: str) -> str:
        action_cls = type(action)
        if action_cls not in self:
            raise ValueError(f"{action_cls.__name__} is not part of '{self.namespace}'")

        values = list(action.model_dump(mode="json").values())
        raw = json.dumps(
            [self.namespace, session_token, action_cls.tag, *values],
            separators=(",", ":"),
            ensure_ascii=False,
        )
        data = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")
        if len(data) > MAX_CALLBACK_DATA_BYTES:
            raise CallbackDataTooLong(
                f"{action_cls.__name__} in '{self.namespace}' encodes to {len(data)} bytes "
                f"(limit {MAX_CALLBACK_DATA_BYTES})"
            )
        return data

    def decode(self, data: str, session_token: str) -> Optional[CallbackAction]:
        """The action behind ``data``, or None if it is not a live button of this screen."""
        try:
            padded = data + "=" * (-len(data) % 4)
            fields = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        except (binascii.Error, ValueError, TypeError, AttributeError):
            logger.debug(f"[CALLBACK] Malformed callback data for '{self.namespace}': {data!r}")
            return None

        if not isinstance(fields, list) or len(fields) < 3:
            return None
        namespace, token, tag, *values = fields
        if namespace != self.namespace or not isinstance(tag, str):
            return None
        if token != session_token:
            logger.debug(f"[CALLBACK] Session token mismatch for '{self.namespace}'")
            return None

        action_cls = self._actions.get(tag)
        if action_cls is None or len(values) != len(action_cls.model_fields):
            return None
        try:
            return action_cls(**dict(zip(action_cls.model_fields, values)))
        except ValidationError:
            logger.debug(f"[CALLBACK] Invalid fields for '{self.namespace}.{tag}': {values!r}")
            return None


# Actions shared by most screens
class Prev(CallbackAction):
    tag = "prev"


class Next(CallbackAction):
    tag = "next"


class Done(CallbackAction):
    tag = "done"


class Back(CallbackAction):
    tag = "back"


class Confirm(CallbackAction):
    tag = "ok"


class Cancel(CallbackAction):
    tag = "cancel"


class Select(CallbackAction):
    """Pick one entity from a list."""
    tag = "sel"
    id: int
