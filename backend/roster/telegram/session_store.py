"""
Per-chat dialogue state.

In-process only: a restart puts every chat back at ``Start``, and buttons
rendered before the restart fail to decode. The engine holds ``lock(chat_id)``
around every read-compute-write so two updates for one chat never race.
"""
import asyncio
from typing import Dict, Type

from roster.telegram.states import Start, State


class SessionStore:
    def __init__(self, initial: Type[State] = Start):
        self._initial = initial
        self._states: Dict[int, State] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def get(self, chat_id: int) -> State:
        state = self._states.get(chat_id)
        if state is None:
            state = self._initial()
            self._states[chat_id] = state
        return state

    def set(self, chat_id: int, state: State) -> None:
        self._states[chat_id] = state

    def lock(self, chat_id: int) -> asyncio.Lock:
        return self._locks.setdefault(chat_id, asyncio.Lock())

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._states

    def __len__(self) -> int:
        return len(self._states)
