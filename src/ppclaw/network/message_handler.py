"""
Message Router - classifies inbound relay frames and dispatches them.

This module manages:
- Frame decoding (malformed payloads are dropped)
- Keep-alive (ping -> pong) and session resets
- Acknowledgment of user-facing messages before processing
- Session key derivation per message type
- Agent invocation with a per-invocation side-effect scope
- Replies, including a generic apology when processing fails

Each conversational frame is processed in its own task so the connection's
read loop never waits on the agent.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TYPE_CHECKING

from ..agent import AgentReply, AgentRequest, GroupNotesTool, InvocationContext, maybe_await
from ..core.exceptions import ProcessingError, ValidationError
from ..core.logging import correlation_context, log_context
from .messages import (
    BOT_DM,
    GROUP_MESSAGE,
    MESSAGE,
    NEW_SESSION,
    PING,
    BotDirectMessage,
    BotDmReply,
    DirectMessage,
    GroupMessage,
    GroupReply,
    Reply,
    ack,
    parse_frame,
    pong,
)

if TYPE_CHECKING:
    from ..storage.notes import NotesStore

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, an error occurred while processing your message."

SendFrame = Callable[[Dict[str, Any]], Awaitable[None]]


class MessageRouter:
    """
    Routes inbound frames from the live relay connection.

    Responsible for:
    - Answering pings and session resets inline
    - Spawning one processing task per message/group_message/bot_dm
    - Emitting ack/reply/group_reply/bot_dm_reply frames
    - Loading group notes and scoping the notes tool to one invocation
    """

    def __init__(
        self,
        agent: Any,
        notes_store: Optional["NotesStore"] = None,
        channel_id: str = "ppclaw",
        apology: str = APOLOGY,
    ):
        """
        Initialize the MessageRouter.

        Args:
            agent: Object implementing the Agent protocol
            notes_store: Group notes backend (notes are empty when omitted)
            channel_id: Channel id reported in every AgentRequest
            apology: Reply content sent when processing fails
        """
        self.agent = agent
        self.notes_store = notes_store
        self.channel_id = channel_id
        self.apology = apology

        self._tasks: Set[asyncio.Task] = set()

        self._stats: Dict[str, int] = {
            "frames_received": 0,
            "frames_dropped": 0,
            "pings": 0,
            "session_resets": 0,
            "messages_processed": 0,
            "processing_failures": 0,
            "send_failures": 0,
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get router statistics."""
        return {
            **self._stats,
            "in_flight": len(self._tasks),
        }

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # -------------------------------------------------------------------------
    # ENTRY POINTS
    # -------------------------------------------------------------------------

    async def dispatch(self, raw: Any, send: SendFrame) -> Optional[asyncio.Task]:
        """
        Handle one raw payload from the connection.

        Pings and session resets are handled before returning. Messages
        that need the agent are scheduled as tasks.

        Returns:
            The processing task, or None if nothing was scheduled
        """
        self._stats["frames_received"] += 1

        frame = parse_frame(raw)
        if frame is None:
            self._stats["frames_dropped"] += 1
            logger.debug("Dropping unparsable frame")
            return None

        frame_type = frame["type"]

        if frame_type == PING:
            self._stats["pings"] += 1
            await self._send(send, pong())
            return None

        if frame_type == NEW_SESSION:
            await self._reset_session()
            return None

        if frame_type in (MESSAGE, GROUP_MESSAGE, BOT_DM):
            task = asyncio.create_task(self.handle_frame(frame, send))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return task

        logger.debug(f"Ignoring frame of unknown type {frame_type!r}")
        return None

    async def handle_frame(self, frame: Dict[str, Any], send: SendFrame) -> None:
        """Process one conversational frame to completion."""
        frame_type = frame.get("type")
        with correlation_context(str(frame.get("id") or "") or None):
            try:
                if frame_type == MESSAGE:
                    await self._handle_direct(DirectMessage.from_dict(frame), send)
                elif frame_type == GROUP_MESSAGE:
                    await self._handle_group(GroupMessage.from_dict(frame), send)
                elif frame_type == BOT_DM:
                    await self._handle_bot_dm(BotDirectMessage.from_dict(frame), send)
                else:
                    logger.debug(f"Ignoring frame of unknown type {frame_type!r}")
            except Exception as e:
                # Processing must never take the connection down
                logger.exception(f"Unhandled error routing {frame_type} frame: {e}")

    async def drain(self) -> None:
        """Wait for all in-flight processing tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel in-flight processing (shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # PER-TYPE HANDLERS
    # -------------------------------------------------------------------------

    async def _reset_session(self) -> None:
        self._stats["session_resets"] += 1
        try:
            await maybe_await(self.agent.reset_conversation())
            logger.info("Conversation reset requested by relay")
        except Exception as e:
            logger.error(f"Agent failed to reset conversation: {e}")

    async def _handle_direct(self, msg: DirectMessage, send: SendFrame) -> None:
        await self._send(send, ack(msg.id))

        context = InvocationContext(session_key=msg.session_key)
        try:
            reply = await self._process(
                msg.id, msg.content, msg.attachments, msg.session_key, msg.metadata(), context
            )
        except ProcessingError as e:
            logger.error(f"Error processing message: {e.message}")
            await self._send(send, Reply(reply_to=msg.id, content=self.apology).to_dict())
            return
        finally:
            context.close()

        await self._send(
            send,
            Reply(reply_to=msg.id, content=reply.content, attachments=reply.attachments).to_dict(),
        )

    async def _handle_group(self, msg: GroupMessage, send: SendFrame) -> None:
        await self._send(send, ack(msg.id))

        context = InvocationContext(session_key=msg.session_key, group_id=msg.group_id)
        if self.notes_store is not None:
            context.tools.append(GroupNotesTool(context, self.notes_store))

        try:
            notes = await self._load_notes(msg.group_id)
            try:
                reply = await self._process(
                    msg.id,
                    msg.content,
                    msg.attachments,
                    msg.session_key,
                    msg.metadata(group_notes=notes),
                    context,
                )
            except ProcessingError as e:
                logger.error(f"Error processing group message in {msg.group_id}: {e.message}")
                await self._send(
                    send,
                    GroupReply(reply_to=msg.id, group_id=msg.group_id, content=self.apology).to_dict(),
                )
                return

            await self._send(
                send,
                GroupReply(
                    reply_to=msg.id,
                    group_id=msg.group_id,
                    content=reply.content,
                    attachments=reply.attachments,
                ).to_dict(),
            )
        finally:
            context.close()

    async def _handle_bot_dm(self, msg: BotDirectMessage, send: SendFrame) -> None:
        # Agent-to-agent traffic carries its own retry layer: no ack, and
        # no reply on failure.
        context = InvocationContext(session_key=msg.session_key)
        try:
            reply = await self._process(
                msg.id, msg.content, [], msg.session_key, msg.metadata(), context
            )
        except ProcessingError as e:
            logger.error(f"Error processing bot DM from {msg.from_agent_id}: {e.message}")
            return
        finally:
            context.close()

        await self._send(
            send,
            BotDmReply(
                reply_to=msg.id,
                target_agent_id=msg.from_agent_id,
                task_id=msg.task_id,
                content=reply.content,
            ).to_dict(),
        )

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    async def _process(
        self,
        message_id: str,
        content: str,
        attachments: Any,
        session_key: str,
        metadata: Dict[str, Any],
        context: InvocationContext,
    ) -> AgentReply:
        """
        Invoke the agent.

        Raises:
            ProcessingError: Wrapping whatever the agent raised
        """
        request = AgentRequest(
            content=content,
            attachments=attachments,
            channel_id=self.channel_id,
            message_id=message_id,
            session_key=session_key,
            metadata=metadata,
            context=context,
        )
        try:
            with log_context(session_key=session_key):
                result = await maybe_await(self.agent.process_message(request))
                reply = AgentReply.coerce(result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats["processing_failures"] += 1
            logger.debug(f"Agent failure for {session_key}", exc_info=True)
            raise ProcessingError(str(e) or type(e).__name__, message_id=message_id) from e

        self._stats["messages_processed"] += 1
        return reply

    async def _load_notes(self, group_id: str) -> str:
        if self.notes_store is None:
            return ""
        try:
            return await self.notes_store.read(group_id)
        except ValidationError as e:
            logger.warning(f"Not loading notes: {e.message}")
            return ""
        except (OSError, ValueError) as e:
            # Unreadable or undecodable notes are treated as empty
            logger.warning(f"Failed to read notes for group {group_id}: {e}")
            return ""

    async def _send(self, send: SendFrame, frame: Dict[str, Any]) -> None:
        try:
            await send(frame)
        except Exception as e:
            self._stats["send_failures"] += 1
            logger.warning(f"Failed to send {frame.get('type')} frame: {e}")
