"""Response assembly for one inbound chat turn."""

import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from pydantic import ValidationError

from factchat.agents.draft import (
    REWRITE_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    DraftAgent,
    build_agent_instructions,
    build_rewrite_prompt,
    build_summary_prompt,
)
from factchat.agents.router import IntentRouter
from factchat.config import settings
from factchat.errors import AppError, ErrorCode
from factchat.schemas.agents import Route
from factchat.schemas.chat import (
    REGENERATE_TRIGGER,
    AssistantTurnMetadata,
    ChatRequest,
    UIMessage,
    UserTurnMetadata,
)
from factchat.services.llm_client import LLMClient
from factchat.services.storage import ObjectStorage
from factchat.services.streaming import STREAM_ERROR_MESSAGE, TurnLifecycle, TurnStream, UIMessageStreamWriter
from factchat.services.threads import ChatRepository
from factchat.services.verification import VerificationOrchestrator, failed_claims, to_source_parts

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


class TurnState(str, Enum):
    """Stages of one turn, in order."""

    ROUTING = "routing"
    GENERAL = "general"
    DRAFTING = "drafting"
    VERIFYING = "verifying"
    STREAMING_DIRECT = "streaming_direct"
    STREAMING_REWRITE = "streaming_rewrite"
    STREAMING_SUMMARY = "streaming_summary"
    PERSISTED = "persisted"


def get_message_text(message: UIMessage) -> str:
    """Concatenate the text parts of a message."""
    return "".join(part["text"] for part in message.parts if part.get("type") == "text")


def get_last_user_message(messages: Sequence[UIMessage]) -> Optional[UIMessage]:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


def validate_messages(raw_messages: List[Dict[str, Any]]) -> List[UIMessage]:
    """
    Validate a client message batch.

    Messages without parts are dropped first.

    Raises:
        AppError: INVALID_REQUEST if nothing is left, INVALID_MESSAGES if a
            remaining message is malformed
    """
    candidates = [message for message in raw_messages if message.get("parts")]
    if not candidates:
        raise AppError(ErrorCode.INVALID_REQUEST)

    try:
        return [UIMessage.model_validate(message) for message in candidates]
    except ValidationError as e:
        logger.info(f"Rejected message batch: {e.error_count()} validation error(s)")
        raise AppError(ErrorCode.INVALID_MESSAGES) from e


def to_model_messages(messages: Sequence[UIMessage]) -> List[Dict[str, str]]:
    """Convert UI messages to role/content messages for the model."""
    model_messages = []
    for message in messages:
        text = get_message_text(message)
        if text:
            model_messages.append({"role": message.role, "content": text})
    return model_messages


class PersistenceGate(TurnLifecycle):
    """Tracks a turn's state and persists the assistant message when it ends."""

    def __init__(self, repository: ChatRepository, owner_id: str, thread_id: UUID):
        self.repository = repository
        self.owner_id = owner_id
        self.thread_id = thread_id
        self.state = TurnState.ROUTING
        self.token_count = 0

    def advance(self, state: TurnState) -> None:
        logger.info(f"Thread {self.thread_id}: {self.state.value} -> {state.value}")
        self.state = state

    def on_token(self, delta: str) -> None:
        self.token_count += 1

    def on_error(self, error: BaseException) -> str:
        logger.error(f"Thread {self.thread_id} failed during {self.state.value}: {error!r}", exc_info=error)
        return STREAM_ERROR_MESSAGE

    async def on_finish(self, message: Dict[str, Any], aborted: bool, error: bool = False) -> None:
        if not message["parts"]:
            logger.info(f"Thread {self.thread_id}: nothing to persist (aborted: {aborted})")
            return

        metadata = None
        if aborted or error:
            metadata = AssistantTurnMetadata(aborted=aborted, error=error)

        await self.repository.append_message(
            self.owner_id,
            self.thread_id,
            role="assistant",
            message_id=message["id"],
            parts=message["parts"],
            metadata=metadata,
        )
        self.advance(TurnState.PERSISTED)


class ResponseAssembler:
    """Routes a turn and builds the stream that answers it."""

    def __init__(
        self,
        repository: ChatRepository,
        storage: ObjectStorage,
        llm_client: LLMClient,
        router: IntentRouter,
        draft_agent: DraftAgent,
        orchestrator: VerificationOrchestrator,
        timeout: Optional[float] = None,
    ):
        """Initialize the assembler."""
        self.repository = repository
        self.storage = storage
        self.llm = llm_client
        self.router = router
        self.draft_agent = draft_agent
        self.orchestrator = orchestrator
        self.timeout = timeout or settings.TURN_TIMEOUT_SECONDS

    async def prepare_turn(self, owner_id: str, request: ChatRequest) -> TurnStream:
        """
        Validate, persist and route a turn, then start streaming its answer.

        Everything that can reject the request happens here, before any
        frame is written.

        Args:
            owner_id: Authenticated principal
            request: Inbound turn

        Returns:
            A started TurnStream

        Raises:
            AppError: On a missing or foreign thread, malformed messages,
                foreign attachments, or non-conforming router output
        """
        if request.thread_id is None or not request.messages:
            raise AppError(ErrorCode.INVALID_REQUEST)

        thread_id = request.thread_id
        await self.repository.get_thread(owner_id, thread_id)
        messages = validate_messages(request.messages)
        context = await self._load_attachments(owner_id, request.chat_file_ids)

        latest = messages[-1]
        if latest.role == "user" and request.trigger != REGENERATE_TRIGGER:
            await self._persist_user_turn(owner_id, thread_id, latest, request.chat_file_ids)

        latest_user = get_last_user_message(messages)
        if latest_user is None:
            raise AppError(ErrorCode.INVALID_MESSAGES)
        latest_text = get_message_text(latest_user)

        gate = PersistenceGate(self.repository, owner_id, thread_id)
        route = await self.router.classify(latest_text)
        model_messages = to_model_messages(messages)

        if route == Route.FACT_CHECK_INPUT:
            producer = self._fact_check_producer(gate, owner_id, latest_text)
        elif route == Route.GENERATE_CONTENT:
            producer = self._generate_content_producer(gate, owner_id, model_messages, context)
        else:
            producer = self._general_chat_producer(gate, model_messages, context)

        return TurnStream(producer, gate, message_id=uuid.uuid4().hex, timeout=self.timeout).start()

    async def _persist_user_turn(
        self,
        owner_id: str,
        thread_id: UUID,
        message: UIMessage,
        chat_file_ids: List[UUID],
    ) -> None:
        metadata = None
        if chat_file_ids:
            metadata = UserTurnMetadata(chat_file_ids=[str(file_id) for file_id in chat_file_ids])
        try:
            await self.repository.append_message(
                owner_id,
                thread_id,
                role="user",
                message_id=message.id,
                parts=message.parts,
                metadata=metadata,
            )
        except Exception as e:
            logger.error(f"Failed to persist user turn {message.id}: {e}", exc_info=True)

    async def _load_attachments(self, owner_id: str, chat_file_ids: List[UUID]) -> str:
        """System context describing the turn's attachments; empty when there are none."""
        files = await self.repository.get_files_for_chat(owner_id, chat_file_ids)
        if not files:
            return ""

        notices = []
        documents = []
        for file in files:
            url = await self.storage.get_download_url(file.storage_id)
            if url is None:
                raise AppError(ErrorCode.FILE_NOT_FOUND)
            notices.append(f"- {file.filename} ({file.content_type}): {url}")
            if file.content_type == PDF_CONTENT_TYPE and file.markdown:
                documents.append(f"### {file.filename}\n{file.markdown}")

        logger.info(f"Loaded {len(files)} attachment(s)")
        return "\n\n".join(["Attached files:\n" + "\n".join(notices), *documents])

    def _general_chat_producer(self, gate: PersistenceGate, model_messages: List[Dict[str, str]], context: str):
        async def produce(writer: UIMessageStreamWriter) -> None:
            gate.advance(TurnState.GENERAL)
            system = "\n\n".join(filter(None, [build_agent_instructions(), context]))
            gate.advance(TurnState.STREAMING_DIRECT)
            await writer.merge(
                self.llm.stream_chat_completion(
                    model=settings.CHAT_MODEL,
                    messages=[{"role": "system", "content": system}, *model_messages],
                )
            )

        return produce

    def _fact_check_producer(self, gate: PersistenceGate, owner_id: str, content: str):
        async def produce(writer: UIMessageStreamWriter) -> None:
            gate.advance(TurnState.VERIFYING)
            results = await self.orchestrator.verify(owner_id, content)

            gate.advance(TurnState.STREAMING_SUMMARY)
            for part in to_source_parts(results):
                writer.write_source(part)
            await self._stream_summary(writer, build_summary_prompt(results))

        return produce

    def _generate_content_producer(
        self,
        gate: PersistenceGate,
        owner_id: str,
        model_messages: List[Dict[str, str]],
        context: str,
    ):
        async def produce(writer: UIMessageStreamWriter) -> None:
            gate.advance(TurnState.DRAFTING)
            draft = await self.draft_agent.draft(model_messages, context)

            gate.advance(TurnState.VERIFYING)
            results = await self.orchestrator.verify(owner_id, draft)
            failed = failed_claims(results)

            if failed:
                gate.advance(TurnState.STREAMING_REWRITE)
                logger.info(f"Rewriting draft with {len(failed)} unsupported claim(s)")
                await writer.merge(
                    self.llm.stream_chat_completion(
                        model=settings.DRAFT_MODEL,
                        messages=[
                            {"role": "system", "content": REWRITE_SYSTEM_PROMPT},
                            {"role": "user", "content": build_rewrite_prompt(draft, failed)},
                        ],
                    )
                )
                return

            gate.advance(TurnState.STREAMING_SUMMARY)
            for part in to_source_parts(results):
                writer.write_source(part)
            writer.write_text(draft)
            writer.end_block()
            await self._stream_summary(writer, build_summary_prompt(results, draft=draft))

        return produce

    async def _stream_summary(self, writer: UIMessageStreamWriter, prompt: str) -> None:
        await writer.merge(
            self.llm.stream_chat_completion(
                model=settings.CHAT_MODEL,
                messages=[
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        )
