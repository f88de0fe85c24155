from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from checker.core.models import ActiveDocument, AssistantTurn, ChatRequest, ConversationTurn, UserTurn
from checker.core.prompt import PromptVariant, load_prompt_variant
from checker.errors import CancellationError, CheckerError, CompletionServiceError, ConfigurationError
from checker.stream import ResponseStream
from checker.tools.checklist import ChecklistLocation, fetch_checklist
from config.settings import Settings


logger = logging.getLogger(__name__)


def build_chat_model(settings: Settings) -> ChatGoogleGenerativeAI:
    if not settings.google_api_key:
        raise ConfigurationError(
            "GOOGLE_API_KEY not set. Please configure it in environment or .env"
        )

    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.google_api_key,
        temperature=settings.temperature,
        top_p=settings.top_p,
    )


def _chunk_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    # Multi-part chunks: keep the text parts only
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text") or "")
    return "".join(parts)


class CompletionClient:
    """Text-completion service backed by a LangChain chat model."""

    def __init__(self, llm: BaseChatModel) -> None:
        self.llm = llm

    async def send_request(self, messages: Sequence[BaseMessage]) -> AsyncIterator[str]:
        """Yield text fragments of the model's reply as they are produced.

        Raises:
            CompletionServiceError: the model call failed before or during
                the stream
        """
        try:
            async for chunk in self.llm.astream(list(messages)):
                text = _chunk_text(chunk.content)
                if text:
                    yield text
        except CheckerError:
            raise
        except Exception as exc:
            raise CompletionServiceError(f"Completion service call failed: {exc}") from exc


def response_text(turn: AssistantTurn) -> str:
    return "".join(part.text() or "" for part in turn.response)


def reconstruct_history(
    history: Sequence[ConversationTurn], assistant_turns: str = "drop"
) -> List[BaseMessage]:
    """Map prior turns to model messages, keeping their order.

    User turns always map to a user message. Assistant turns depend on
    `assistant_turns`: with "drop" their text is assembled and then discarded,
    with "include" it becomes an assistant message (empty when the turn had no
    text parts).
    """
    messages: List[BaseMessage] = []
    for turn in history:
        if isinstance(turn, UserTurn):
            messages.append(HumanMessage(content=turn.prompt))
        elif isinstance(turn, AssistantTurn):
            text = response_text(turn)
            if assistant_turns == "include":
                messages.append(AIMessage(content=text))
    return messages


def format_user_prompt(
    prompt: str, document: Optional[ActiveDocument], variant: PromptVariant
) -> str:
    if document is None:
        return prompt
    source = document.text
    if not source.endswith("\n"):
        source += "\n"
    fence_info = document.language_id or ""
    return f"{prompt}\n\n{variant.source_heading}\n```{fence_info}\n{source}```"


def compose_messages(
    checklist: str,
    history_messages: Sequence[BaseMessage],
    request: ChatRequest,
    variant: PromptVariant,
    stream: ResponseStream,
) -> List[BaseMessage]:
    messages: List[BaseMessage] = [HumanMessage(content=variant.render_preamble(checklist))]
    messages.extend(history_messages)

    document = request.active_document
    if document is not None:
        stream.reference(document.uri)
    messages.append(HumanMessage(content=format_user_prompt(request.prompt, document, variant)))
    return messages


async def stream_completion(
    client: CompletionClient,
    messages: Sequence[BaseMessage],
    stream: ResponseStream,
    cancel: Optional[asyncio.Event] = None,
) -> int:
    """Relay each fragment to the sink in arrival order.

    Cancellation is checked at fragment boundaries only; a fragment already
    received when the signal fires is dropped, never truncated.

    Returns:
        Number of fragments relayed

    Raises:
        CancellationError: the cancel event was set
        CompletionServiceError: the completion call failed
    """
    if cancel is not None and cancel.is_set():
        raise CancellationError("Request cancelled before completion started")

    relayed = 0
    async with aclosing(client.send_request(messages)) as fragments:
        async for fragment in fragments:
            if cancel is not None and cancel.is_set():
                raise CancellationError(
                    f"Request cancelled after {relayed} fragment(s)",
                    details={"fragments": relayed},
                )
            stream.markdown(fragment)
            relayed += 1
    return relayed


class PipelineState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    COMPOSING = "composing"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"


@dataclass
class ChatResult:
    fragments: int = 0
    cancelled: bool = False
    reference: Optional[str] = None


ChecklistFetcher = Callable[[ChecklistLocation, str], Awaitable[str]]
ClientFactory = Callable[[Settings], CompletionClient]


def default_client_factory(settings: Settings) -> CompletionClient:
    return CompletionClient(build_chat_model(settings))


class SecurityCheckHandler:
    """Chat request handler: fetch checklist, compose prompt, stream reply."""

    def __init__(
        self,
        settings: Settings,
        fetcher: ChecklistFetcher = fetch_checklist,
        client_factory: ClientFactory = default_client_factory,
        variant: Optional[PromptVariant] = None,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.client_factory = client_factory
        self.variant = variant or load_prompt_variant(settings)

    async def __call__(
        self,
        request: ChatRequest,
        stream: ResponseStream,
        cancel: Optional[asyncio.Event] = None,
    ) -> ChatResult:
        state = PipelineState.IDLE
        result = ChatResult()

        def advance(next_state: PipelineState) -> None:
            nonlocal state
            logger.info("Pipeline %s -> %s", state.value, next_state.value)
            state = next_state

        try:
            advance(PipelineState.FETCHING)
            location = self.settings.checklist_location()
            checklist = await self.fetcher(location, self.settings.checklist_encoding)

            advance(PipelineState.COMPOSING)
            history_messages = reconstruct_history(request.history, self.settings.assistant_history)
            messages = compose_messages(checklist, history_messages, request, self.variant, stream)
            if request.active_document is not None:
                result.reference = request.active_document.uri
            logger.info(
                "Composed %s messages (%s from history, document=%s)",
                len(messages),
                len(history_messages),
                result.reference is not None,
            )

            advance(PipelineState.STREAMING)
            client = self.client_factory(self.settings)
            try:
                result.fragments = await stream_completion(client, messages, stream, cancel)
            except CancellationError as exc:
                logger.info("Streaming cancelled: %s", exc.message)
                result.fragments = exc.details.get("fragments", 0)
                result.cancelled = True

            advance(PipelineState.DONE)
            logger.info("Relayed %s fragment(s)", result.fragments)
            return result
        except CheckerError as exc:
            failed_in = state
            advance(PipelineState.ERROR)
            logger.error("Chat request failed while %s: %s", failed_in.value, exc.message)
            raise
