"""Button payload encoding and decoding."""
import base64
import json

import pytest

from roster.core import config
from roster.core.config import settings
from roster.core.exceptions import CallbackDataTooLong
from roster.models.enums import Ict, RoleType, UsrType
from roster.telegram.callbacks import (
    MAX_CALLBACK_DATA_BYTES,
    TOKEN_ALPHABET,
    CallbackAction,
    CallbackActions,
    Cancel,
    Done,
    Next,
    Prev,
    Select,
    generate_token,
)
from roster.telegram.handlers.availability import ChooseIct
from roster.telegram.handlers.forecast import FORECAST_ACTIONS, Months
from roster.telegram.handlers.forecast import ViewRole as ForecastRole
from roster.telegram.handlers.notify import NOTIFY_ACTIONS, ToggleFlag
from roster.telegram.handlers.plan import PLAN_ACTIONS, Toggle, ViewRole
from roster.telegram.handlers.register import TYPE_ACTIONS, ChooseType
from roster.telegram.handlers.saf100 import VIEW_ACTIONS as SAF100_ACTIONS
from roster.telegram.handlers.user import OPTION_ACTIONS as USER_OPTION_ACTIONS
from roster.telegram.handlers.user import ChooseType as UserChooseType
from roster.telegram.handlers.user import SetAdmin


class Pick(CallbackAction):
    tag = "pick"
    id: int
    role_type: RoleType


class Comment(CallbackAction):
    tag = "comment"
    text: str


ACTIONS = CallbackActions("test", Pick, Prev, Next, Done)


@pytest.mark.parametrize("action", [
    Prev(),
    Next(),
    Done(),
    Pick(id=0, role_type=RoleType.PILOT),
    Pick(id=2_147_483_647, role_type=RoleType.ARO),
])
def test_round_trip(action):
    token = generate_token()
    data = ACTIONS.encode(action, token)
    assert ACTIONS.decode(data, token) == action


def test_decoded_fields_keep_their_types():
    data = ACTIONS.encode(Pick(id=7, role_type=RoleType.ARO), "abcde")
    decoded = ACTIONS.decode(data, "abcde")
    assert isinstance(decoded, Pick)
    assert decoded.role_type is RoleType.ARO


def test_token_replay_is_rejected():
    data = ACTIONS.encode(Pick(id=3, role_type=RoleType.PILOT), "AAAAA")
    assert ACTIONS.decode(data, "BBBBB") is None


def test_other_action_set_is_rejected():
    other = CallbackActions("other", Prev, Next, Done)
    data = other.encode(Next(), "abcde")
    assert ACTIONS.decode(data, "abcde") is None


@pytest.mark.parametrize("data", [
    "",
    "not base64 at all!",
    "%%%%",
    base64.urlsafe_b64encode(b"\xff\xfe\x00").decode(),
    base64.urlsafe_b64encode(b'{"a": 1}').decode(),
    base64.urlsafe_b64encode(b'["test"]').decode(),
    base64.urlsafe_b64encode(b'["test", "abcde", "unknown"]').decode(),
    base64.urlsafe_b64encode(b'["test", "abcde", ["pick"], 1]').decode(),
    base64.urlsafe_b64encode(b'["test", "abcde", "pick", 1]').decode(),
    base64.urlsafe_b64encode(b'["test", "abcde", "pick", "x", "PILOT"]').decode(),
    base64.urlsafe_b64encode(b'["test", "abcde", "pick", 1, "NAVIGATOR"]').decode(),
])
def test_malformed_data_decodes_to_none(data):
    assert ACTIONS.decode(data, "abcde") is None


def test_payload_is_compact_json_array():
    data = ACTIONS.encode(Pick(id=12, role_type=RoleType.PILOT), "abcde")
    padded = data + "=" * (-len(data) % 4)
    assert json.loads(base64.urlsafe_b64decode(padded)) == ["test", "abcde", "pick", 12, "PILOT"]
    assert "=" not in data


def test_oversized_payload_is_a_programming_error():
    codec = CallbackActions("test", Comment)
    with pytest.raises(CallbackDataTooLong):
        codec.encode(Comment(text="x" * 60), "abcde")


def test_encoding_an_action_from_another_set_fails():
    with pytest.raises(ValueError):
        ACTIONS.encode(Cancel(), "abcde")


def test_duplicate_tags_are_rejected():
    class AlsoNext(CallbackAction):
        tag = "next"

    with pytest.raises(ValueError):
        CallbackActions("dup", Next, AlsoNext)


def test_generated_tokens():
    tokens = {generate_token() for _ in range(50)}
    assert all(len(token) == 5 and set(token) <= set(TOKEN_ALPHABET) for token in tokens)
    assert len(tokens) > 1
    assert len(generate_token(12)) == 12


@pytest.mark.parametrize("codec, action", [
    (PLAN_ACTIONS, Toggle(id=2_147_483_647)),
    (PLAN_ACTIONS, ViewRole(role_type=RoleType.PILOT)),
    (NOTIFY_ACTIONS, ToggleFlag(flag="notif_availability")),
    (TYPE_ACTIONS, ChooseType(usr_type=UsrType.ACTIVE)),
    (CallbackActions("avail_type", ChooseIct), ChooseIct(ict_type=Ict.OTHER)),
    (CallbackActions("avail_sel", Select), Select(id=2_147_483_647)),
    (USER_OPTION_ACTIONS, UserChooseType(usr_type=UsrType.ACTIVE)),
    (USER_OPTION_ACTIONS, SetAdmin(admin=False)),
    (SAF100_ACTIONS, Select(id=2_147_483_647)),
    (FORECAST_ACTIONS, ForecastRole(role_type=RoleType.PILOT)),
    (FORECAST_ACTIONS, Months(count=2)),
])
def test_screen_buttons_fit_telegram_limit(codec, action):
    data = codec.encode(action, generate_token(settings.MAX_CALLBACK_TOKEN_LENGTH))
    assert len(data.encode()) <= MAX_CALLBACK_DATA_BYTES


@pytest.mark.parametrize("value", ["3", "9", "13"])
def test_token_length_outside_bounds_is_refused(monkeypatch, value):
    monkeypatch.setenv("CALLBACK_TOKEN_LENGTH", value)
    with pytest.raises(ValueError, match="CALLBACK_TOKEN_LENGTH"):
        config._bounded_int("CALLBACK_TOKEN_LENGTH", 5, 4, settings.MAX_CALLBACK_TOKEN_LENGTH)


def test_token_length_within_bounds(monkeypatch):
    monkeypatch.setenv("CALLBACK_TOKEN_LENGTH", "8")
    assert config._bounded_int("CALLBACK_TOKEN_LENGTH", 5, 4, settings.MAX_CALLBACK_TOKEN_LENGTH) == 8
