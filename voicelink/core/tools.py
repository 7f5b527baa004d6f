"""Tool registry and the bridge that runs remote function calls locally.

A tool is registered with a pydantic model describing its parameters; the
model provides both the JSON schema advertised to the realtime service and
validation of incoming arguments. Registration fails fast on bad definitions.
Nothing a tool does can end the session: unknown tools, bad arguments and
handler exceptions all become structured results for the remote peer.
"""

from __future__ import annotations

import inspect
import json
import re
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from pydantic import BaseModel, ValidationError

from voicelink.core.events import ChannelEvent, EventChannel, EventKind, ToolCall
from voicelink.exceptions import ToolHandlerError
from voicelink.logging_config import get_logger
from voicelink.observability.metrics import TOOL_CALLS

logger: Any = get_logger(__name__)

TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

ToolHandler = Callable[..., Any]
PeerSender = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class ToolSpec:
    """A registered tool: name, description, parameter model and handler."""

    name: str
    description: str
    parameters: type[BaseModel]
    handler: ToolHandler
    schema: dict[str, Any] = field(default_factory=dict, repr=False)

    def definition(self) -> dict[str, Any]:
        """Realtime `function` tool definition."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.schema,
        }


class ToolRegistry:
    """Capability map of tool name -> ToolSpec."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(
        self,
        name: str,
        description: str,
        parameters: type[BaseModel],
        handler: ToolHandler,
    ) -> ToolSpec:
        """Register a tool.

        Raises:
            ValueError: Invalid or duplicate name
            TypeError: parameters is not a pydantic model, or handler not callable
        """
        if not isinstance(name, str) or not TOOL_NAME_RE.match(name):
            raise ValueError(f"Invalid tool name: {name!r}")
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        if not (isinstance(parameters, type) and issubclass(parameters, BaseModel)):
            raise TypeError(f"Tool {name} parameters must be a pydantic BaseModel subclass")
        if not callable(handler):
            raise TypeError(f"Tool {name} handler is not callable")

        schema = parameters.model_json_schema()
        schema.pop("title", None)
        spec = ToolSpec(
            name=name,
            description=description,
            parameters=parameters,
            handler=handler,
            schema=schema,
        )
        self._tools[name] = spec
        logger.debug(f"Registered tool {name}")
        return spec

    def tool(
        self, name: str, description: str, parameters: type[BaseModel]
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of register()."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(name, description, parameters, handler)
            return handler

        return decorator

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def definitions(self) -> list[dict[str, Any]]:
        return [spec.definition() for spec in self._tools.values()]

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


class ToolInvocationBridge:
    """Runs tool-call events against the registry and replies to the peer."""

    def __init__(
        self,
        registry: ToolRegistry,
        channel: EventChannel,
        send: PeerSender,
        max_handled_calls: int = 256,
    ) -> None:
        self._registry = registry
        self._channel = channel
        self._send = send
        self._unsubscribe: Callable[[], None] | None = None
        self._handled: OrderedDict[str, None] = OrderedDict()
        self._max_handled_calls = max_handled_calls

    def attach(self) -> None:
        """Start handling tool-call events from the channel."""
        if self._unsubscribe is None:
            self._unsubscribe = self._channel.subscribe(self.handle_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def handle_event(self, event: ChannelEvent) -> None:
        if event.kind != EventKind.TOOL_CALL or event.tool_call is None:
            return
        call_id = event.tool_call.correlation_id
        if call_id:
            # Redelivered calls were already answered
            if call_id in self._handled:
                logger.debug(f"Skipping repeated tool call {call_id}")
                return
            self._handled[call_id] = None
            while len(self._handled) > self._max_handled_calls:
                self._handled.popitem(last=False)
        await self.invoke(event.tool_call)

    async def invoke(self, call: ToolCall) -> ToolCall:
        """Run one tool call and send its output back to the peer.

        Returns the call with result or error filled in.
        """
        self._publish(EventKind.TOOL_STARTED, call)

        spec = self._registry.get(call.name)
        if spec is None:
            logger.warning(f"Unknown tool requested: {call.name}")
            return self._finish(call, {"error": "unknown_tool", "name": call.name}, "unknown_tool")

        try:
            params = spec.parameters.model_validate(_parse_arguments(call.arguments))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Invalid arguments for {call.name}: {e}")
            result = {"error": "invalid_arguments", "name": call.name, "message": str(e)}
            return self._finish(call, result, "invalid_arguments")

        try:
            output = spec.handler(**params.model_dump())
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            failure = ToolHandlerError(call.name, str(e) or type(e).__name__)
            logger.exception(f"Tool {call.name} failed")
            return self._finish(call, failure.to_result(), "tool_failed")

        result = output if isinstance(output, dict) else {"result": output}
        return self._finish(call, result, None)

    def _finish(self, call: ToolCall, result: dict[str, Any], error: str | None) -> ToolCall:
        done = replace(call, result=result, error=error)
        TOOL_CALLS.labels(tool=call.name, outcome=error or "ok").inc()
        self._reply(done)
        self._publish(EventKind.TOOL_FAILED if error else EventKind.TOOL_COMPLETED, done)
        return done

    def _reply(self, call: ToolCall) -> None:
        self._send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "function_call_output",
                    "call_id": call.correlation_id,
                    "output": json.dumps(call.result, default=str),
                },
            }
        )
        self._send({"type": "response.create"})

    def _publish(self, kind: EventKind, call: ToolCall) -> None:
        payload: dict[str, Any] = {"name": call.name, "call_id": call.correlation_id}
        if kind == EventKind.TOOL_STARTED:
            payload["arguments"] = call.arguments
        else:
            payload["result"] = call.result
        wire_type = {
            EventKind.TOOL_STARTED: "tool.started",
            EventKind.TOOL_COMPLETED: "tool.completed",
            EventKind.TOOL_FAILED: "tool.failed",
        }[kind]
        self._channel.emit(
            ChannelEvent(kind=kind, type=wire_type, payload=payload, tool_call=call)
        )


def _parse_arguments(arguments: Any) -> dict[str, Any]:
    """Arguments arrive as a JSON string (Realtime API) or an object."""
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, str):
        parsed = json.loads(arguments)
    else:
        parsed = arguments
    if not isinstance(parsed, dict):
        raise ValueError("Tool arguments must be a JSON object")
    return parsed
