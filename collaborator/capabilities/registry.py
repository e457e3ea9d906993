"""Capability registry: the static table of named handlers."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from langchain_core.language_models import BaseChatModel

from collaborator.capabilities.base import CapabilityDescriptor
from collaborator.capabilities.email_sender import create_email_sender
from collaborator.capabilities.meetings import create_meeting_manager
from collaborator.capabilities.planner import create_planner
from collaborator.capabilities.search import create_search
from collaborator.capabilities.summarizer import create_summarizer
from collaborator.services.graph_client import GraphClient

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    """Ordered, name-unique collection of ``CapabilityDescriptor``.

    Populated once at start-up, then frozen.  After ``freeze()`` the registry
    is read-only; the router freezes it when it is constructed.
    """

    def __init__(self, descriptors: Sequence[CapabilityDescriptor] = ()):
        self._descriptors: dict[str, CapabilityDescriptor] = {}
        self._frozen = False
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: CapabilityDescriptor) -> None:
        if self._frozen:
            raise RuntimeError("Capability registry is frozen")
        if descriptor.name in self._descriptors:
            raise ValueError(f"Capability {descriptor.name!r} is already registered")
        self._descriptors[descriptor.name] = descriptor
        logger.debug("Registered capability: %s", descriptor.name)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def all(self) -> tuple[CapabilityDescriptor, ...]:
        """Descriptors in registration order."""
        return tuple(self._descriptors.values())

    def find(self, name: str) -> CapabilityDescriptor | None:
        return self._descriptors.get(name)

    def names(self) -> list[str]:
        return list(self._descriptors)

    def routing_brief(self) -> str:
        """Routing descriptions joined in registration order."""
        return "\n\n".join(d.routing_description for d in self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors


def build_default_registry(
    graph: GraphClient,
    summary_llm: BaseChatModel,
    bot_email: str,
) -> CapabilityRegistry:
    """The built-in capabilities, in the order the oracle is briefed."""
    return CapabilityRegistry([
        create_summarizer(summary_llm),
        create_search(),
        create_planner(graph),
        create_meeting_manager(graph, summary_llm),
        create_email_sender(graph, bot_email),
    ])
