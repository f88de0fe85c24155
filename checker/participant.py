from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from checker.agent import ChatResult
from checker.core.models import ChatRequest
from checker.stream import ResponseStream


logger = logging.getLogger(__name__)

ChatHandler = Callable[[ChatRequest, ResponseStream, Optional[asyncio.Event]], Awaitable[ChatResult]]


class ChatParticipant:
    """A handler registered under a fixed identifier."""

    def __init__(self, participant_id: str, handler: ChatHandler) -> None:
        self.id = participant_id
        self.handler = handler

    async def handle(
        self,
        request: ChatRequest,
        stream: ResponseStream,
        cancel: Optional[asyncio.Event] = None,
    ) -> ChatResult:
        return await self.handler(request, stream, cancel)


class ParticipantRegistry:
    """Routes chat requests to participants by identifier."""

    def __init__(self) -> None:
        self._participants: Dict[str, ChatParticipant] = {}

    def create_chat_participant(self, participant_id: str, handler: ChatHandler) -> ChatParticipant:
        if not participant_id:
            raise ValueError("Participant id must not be empty")
        if participant_id in self._participants:
            raise ValueError(f"Chat participant already registered: {participant_id}")
        participant = ChatParticipant(participant_id, handler)
        self._participants[participant_id] = participant
        logger.info("Registered chat participant %s", participant_id)
        return participant

    def get(self, participant_id: str) -> Optional[ChatParticipant]:
        return self._participants.get(participant_id)

    def ids(self) -> List[str]:
        return list(self._participants)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._participants
