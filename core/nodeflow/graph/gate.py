"""
Interaction Gate - human-in-the-loop checkpoints on variable reads/writes.

When a variable's popup config asks for it, the executor pauses at the gate
before handing the value to a node (input) or before storing a node's
result (output). Every gate call settles within its timeout:

- InteractionGate: the protocol the executor depends on
- AutoResponderGate: scripted answers (headless runs, tests)
- QueuedInteractionGate: an external client answers through provide_response()
- TerminalInteractionGate: asks on the terminal with rich
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.prompt import Prompt

from nodeflow.errors import InteractionCancelled

if TYPE_CHECKING:
    from nodeflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


class PromptAction(StrEnum):
    CONFIRM = "confirm"
    SKIP = "skip"
    CLEAR = "clear"  # output prompts only
    TIMEOUT = "timeout"


class PromptDirection(StrEnum):
    INPUT = "input"
    OUTPUT = "output"


@dataclass
class PromptResult:
    """How a prompt was resolved and the value it resolved with."""

    action: PromptAction
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "value": self.value}


@dataclass
class PromptRequest:
    """A pending question to a human."""

    id: str
    node_id: str
    variable_name: str
    direction: PromptDirection
    value: Any
    timeout_ms: int
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "node_id": self.node_id,
            "variable_name": self.variable_name,
            "direction": self.direction.value,
            "value": self.value,
            "timeout_ms": self.timeout_ms,
            "created_at": self.created_at.isoformat(),
        }


class InteractionGate(ABC):
    """Protocol consumed by the executor. Implementations must always settle."""

    @abstractmethod
    async def show_input_prompt(
        self, node_id: str, variable_name: str, current_value: Any, timeout_ms: int
    ) -> PromptResult:
        """Resolve with confirm (possibly edited value), skip or timeout."""

    @abstractmethod
    async def show_output_prompt(
        self, node_id: str, variable_name: str, candidate_value: Any, timeout_ms: int
    ) -> PromptResult:
        """Resolve with confirm (possibly edited value), skip, clear or timeout."""


class RequestGate(InteractionGate):
    """Base for gates that turn each prompt into a PromptRequest and answer it in ``_ask``."""

    @abstractmethod
    async def _ask(self, request: PromptRequest) -> PromptResult: ...

    async def show_input_prompt(
        self, node_id: str, variable_name: str, current_value: Any, timeout_ms: int
    ) -> PromptResult:
        return await self._ask(
            PromptRequest(
                id=uuid.uuid4().hex[:8],
                node_id=node_id,
                variable_name=variable_name,
                direction=PromptDirection.INPUT,
                value=current_value,
                timeout_ms=timeout_ms,
            )
        )

    async def show_output_prompt(
        self, node_id: str, variable_name: str, candidate_value: Any, timeout_ms: int
    ) -> PromptResult:
        return await self._ask(
            PromptRequest(
                id=uuid.uuid4().hex[:8],
                node_id=node_id,
                variable_name=variable_name,
                direction=PromptDirection.OUTPUT,
                value=candidate_value,
                timeout_ms=timeout_ms,
            )
        )


# answer(request) -> PromptResult | None; None means "never answer"
Responder = Callable[[PromptRequest], "PromptResult | None"]


class AutoResponderGate(RequestGate):
    """
    Answers prompts from a script.

    Per-variable responses take precedence over the default action. A
    response of None leaves the prompt unanswered until it times out.

    Example:
        gate = AutoResponderGate(
            responses={("output", "summary"): PromptResult(PromptAction.CONFIRM, "edited")},
        )
    """

    def __init__(
        self,
        default_action: PromptAction = PromptAction.SKIP,
        responses: dict[tuple[str, str], PromptResult | Responder | None] | None = None,
    ):
        self.default_action = default_action
        self.responses = dict(responses or {})
        self.requests: list[PromptRequest] = []

    def _answer(self, request: PromptRequest) -> PromptResult | None:
        key = (request.direction.value, request.variable_name)
        if key in self.responses:
            response = self.responses[key]
            if callable(response):
                return response(request)
            return response
        if self.default_action == PromptAction.TIMEOUT:
            return None
        return PromptResult(self.default_action, request.value)

    async def _ask(self, request: PromptRequest) -> PromptResult:
        self.requests.append(request)
        answer = self._answer(request)
        if answer is None:
            await asyncio.sleep(request.timeout_ms / 1000)
            return PromptResult(PromptAction.TIMEOUT, request.value)
        return answer


class QueuedInteractionGate(RequestGate):
    """
    Gate answered by an external client (web UI, API handler).

    - show_*_prompt() registers a PromptRequest, publishes
      INTERACTION_REQUESTED, then awaits provide_response()
    - provide_response() resolves a pending request by id
    - cancel() rejects a pending request with InteractionCancelled
    """

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self._event_bus = event_bus
        self._pending: dict[str, tuple[PromptRequest, asyncio.Future]] = {}

    def pending_requests(self) -> list[PromptRequest]:
        return [request for request, _ in self._pending.values()]

    async def _ask(self, request: PromptRequest) -> PromptResult:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = (request, future)

        if self._event_bus is not None:
            await self._event_bus.emit_interaction_requested(
                node_id=request.node_id,
                variable=request.variable_name,
                direction=request.direction.value,
                timeout_ms=request.timeout_ms,
                request_id=request.id,
            )

        try:
            return await asyncio.wait_for(future, timeout=request.timeout_ms / 1000)
        except TimeoutError:
            logger.info(f"⏱ Prompt for '{request.variable_name}' timed out")
            return PromptResult(PromptAction.TIMEOUT, request.value)
        finally:
            self._pending.pop(request.id, None)

    def provide_response(self, request_id: str, action: PromptAction, value: Any = None) -> None:
        """Called externally to answer a pending prompt."""
        entry = self._pending.get(request_id)
        if entry is None:
            raise KeyError(f"no pending prompt with id {request_id}")
        request, future = entry
        if action == PromptAction.CLEAR and request.direction == PromptDirection.INPUT:
            raise ValueError("input prompts cannot be cleared")
        if not future.done():
            future.set_result(PromptResult(action, request.value if value is None else value))

    def cancel(self, request_id: str) -> None:
        entry = self._pending.get(request_id)
        if entry is None:
            raise KeyError(f"no pending prompt with id {request_id}")
        _, future = entry
        if not future.done():
            future.set_exception(InteractionCancelled(f"prompt {request_id} cancelled"))


class TerminalInteractionGate(RequestGate):
    """
    Asks on the terminal.

    The blocking prompt runs in a worker thread; on timeout the gate settles
    immediately even though the thread keeps waiting for its line of input.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def _parse_edit(self, original: Any, text: str) -> Any:
        if isinstance(original, str):
            return text
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    def _ask_blocking(self, request: PromptRequest) -> PromptResult:
        title = f"{request.direction.value} · {request.variable_name} · node {request.node_id}"
        self.console.print(Panel(Pretty(request.value), title=title))

        choices = ["confirm", "edit", "skip", "cancel"]
        if request.direction == PromptDirection.OUTPUT:
            choices.insert(2, "clear")

        choice = Prompt.ask("Action", choices=choices, default="confirm", console=self.console)
        if choice == "edit":
            text = Prompt.ask("New value", console=self.console)
            return PromptResult(PromptAction.CONFIRM, self._parse_edit(request.value, text))
        if choice == "clear":
            return PromptResult(PromptAction.CLEAR, "")
        if choice == "skip":
            return PromptResult(PromptAction.SKIP, request.value)
        if choice == "cancel":
            raise InteractionCancelled(f"prompt for '{request.variable_name}' cancelled")
        return PromptResult(PromptAction.CONFIRM, request.value)

    async def _ask(self, request: PromptRequest) -> PromptResult:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._ask_blocking, request),
                timeout=request.timeout_ms / 1000,
            )
        except TimeoutError:
            self.console.print(
                f"[yellow]⏱ No answer for {request.variable_name}, continuing[/yellow]"
            )
            return PromptResult(PromptAction.TIMEOUT, request.value)
