"""Wires storage, the Graph gateway, the capability registry and the router.

``CollaboratorAgent`` is what the HTTP server and the CLI talk to: it turns
an inbound chat message into a ``RequestContext``, decides whether the
message needs an answer at all (group chats only answer when mentioned),
and hands it to the ``RequestRouter``.
"""

from __future__ import annotations

import logging
import re
import uuid

from collaborator import config
from collaborator.capabilities.registry import build_default_registry
from collaborator.llm import build_fast_llm
from collaborator.models import MessageRecord, UserIdentity, create_request_context
from collaborator.oracle import AnthropicDecisionOracle, DecisionPort
from collaborator.router import RequestRouter, RouterReply
from collaborator.services.auth import ClientCredentialsProvider, CredentialCache
from collaborator.services.graph_client import GraphClient
from collaborator.storage.base import FEEDBACK_REACTIONS, Storage
from collaborator.storage.factory import create_storage
from collaborator.storage.memory import ConversationMemory

logger = logging.getLogger(__name__)

# Chat platforms embed the mention as markup, e.g. "<at>Collaborator</at> summarize".
_MENTION_RE = re.compile(r"<at>.*?</at>", re.IGNORECASE | re.DOTALL)


def strip_mentions(text: str) -> str:
    return " ".join(_MENTION_RE.sub(" ", text or "").split())


class CollaboratorAgent:
    def __init__(
        self,
        router: RequestRouter,
        storage: Storage,
        graph: GraphClient | None = None,
    ):
        self.router = router
        self.storage = storage
        self.graph = graph

    def memory_for(self, conversation_id: str) -> ConversationMemory:
        return ConversationMemory(self.storage, conversation_id)

    def handle_message(
        self,
        *,
        text: str,
        conversation_id: str,
        user_id: str,
        user_name: str = "User",
        user_email: str | None = None,
        activity_id: str | None = None,
        is_group: bool = False,
        mentioned: bool = False,
    ) -> RouterReply | None:
        """Process one inbound message.

        Returns ``None`` for group messages that don't mention the bot: those
        are only recorded so later summaries and searches can see them.
        """
        memory = self.memory_for(conversation_id)
        user = UserIdentity(id=user_id, name=user_name or "User", email=user_email)
        context = create_request_context(
            text=strip_mentions(text),
            conversation_id=conversation_id,
            user=user,
            memory=memory,
            activity_id=activity_id or uuid.uuid4().hex,
            is_group=is_group,
        )

        if is_group and not mentioned:
            memory.append([
                MessageRecord(
                    role="user",
                    author_name=user.name,
                    content=context.text,
                    activity_id=context.activity_id,
                    timestamp=context.timestamp,
                    conversation_id=conversation_id,
                )
            ])
            logger.debug("Recorded group message %s without replying", context.activity_id)
            return None

        return self.router.handle(context)

    def record_feedback(self, reply_id: str, reaction: str, payload: dict | None = None) -> bool:
        if reaction not in FEEDBACK_REACTIONS:
            logger.warning("Ignoring feedback with unknown reaction %r for %s", reaction, reply_id)
            return False
        recorded = self.storage.record_feedback(reply_id, reaction, payload)
        if recorded:
            logger.debug("Recorded %s feedback for %s", reaction, reply_id)
        else:
            logger.warning("Failed to record feedback for %s", reply_id)
        return recorded

    def check_graph(self) -> dict:
        if self.graph is None:
            return {"success": False, "message": "Graph client is not configured."}
        return self.graph.test_connectivity()

    def close(self) -> None:
        self.router.close()
        if self.graph is not None:
            self.graph.close()
        self.storage.close()


def create_collaborator_agent(oracle: DecisionPort | None = None) -> CollaboratorAgent:
    """Build the agent from ``collaborator.config``.

    Call ``config.validate_environment()`` first; this assumes the required
    credentials are present.
    """
    storage = create_storage(config.STORAGE_BACKEND, config.CONVERSATIONS_DB_PATH)

    provider = ClientCredentialsProvider(
        config.AAD_APP_CLIENT_ID,
        config.AAD_APP_CLIENT_SECRET,
        config.AAD_APP_TENANT_ID,
        authority_host=config.AUTHORITY_HOST,
    )
    graph = GraphClient(
        CredentialCache(provider),
        config.GRAPH_BASE_URL,
        scopes=(config.GRAPH_SCOPE,),
    )

    registry = build_default_registry(graph, build_fast_llm(), config.BOT_EMAIL_ADDRESS)
    router = RequestRouter(
        registry,
        oracle or AnthropicDecisionOracle(),
        recent_limit=config.RECENT_MEMORY_LIMIT,
        capability_timeout=config.CAPABILITY_TIMEOUT_SECONDS,
    )
    logger.debug(
        "Collaborator agent ready: storage=%s, capabilities=%s, model=%s",
        storage.name, ", ".join(registry.names()), config.MODEL_NAME,
    )
    return CollaboratorAgent(router, storage, graph)
