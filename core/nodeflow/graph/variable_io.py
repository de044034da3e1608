"""
Variable IO - how a node's ports meet the shared variable namespace.

Inputs, per declared input name, first match wins:
1. A bound variable (through the node's VariableBinding), optionally
   confirmed or edited at the interaction gate
2. The upstream output wired by a connection
3. The node's declared default

Outputs, per bound output: parse, optionally gate, then create or update
the variable. Image arrays are registered element by element; revised
prompts that come with them are written to a sibling variable.

Failures here are logged and never fail the node.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any

import httpx

from nodeflow.errors import InteractionCancelled, StorageBackendError, VariableError
from nodeflow.graph.gate import InteractionGate, PromptAction, PromptResult
from nodeflow.graph.output_parser import parse_output_value
from nodeflow.schemas.storage_item import NO_OUTPUT
from nodeflow.storage.media import extract_file_extension, mime_from_extension

if TYPE_CHECKING:
    from nodeflow.graph.edge import GraphSpec
    from nodeflow.graph.node import WorkflowNode
    from nodeflow.runtime.event_bus import EventBus
    from nodeflow.storage.manager import StorageManager
    from nodeflow.storage.media import MediaLoader

logger = logging.getLogger(__name__)

IMAGE_OUTPUT = "images"


def revised_prompt_variable(images_variable: str) -> str:
    """``scene_images`` → ``scene_revised_prompt``; otherwise append the suffix."""
    if "_images" in images_variable:
        return images_variable.replace("_images", "_revised_prompt")
    return f"{images_variable}_revised_prompt"


class VariableIO:
    """Resolves node inputs from, and saves node outputs to, a StorageManager."""

    def __init__(
        self,
        storage: StorageManager,
        gate: InteractionGate,
        event_bus: EventBus | None = None,
        media_loader: MediaLoader | None = None,
        download_media: bool = False,
    ):
        self.storage = storage
        self.gate = gate
        self.event_bus = event_bus
        self.media_loader = media_loader
        self.download_media = download_media

    # === GATE ===

    async def _ask(
        self,
        node_id: str,
        variable_name: str,
        direction: str,
        prompt: Awaitable[PromptResult],
        value: Any,
        timeout_ms: int,
    ) -> PromptResult:
        """Await a gate call, forcing a timeout result once ``timeout_ms`` passes."""
        try:
            result = await asyncio.wait_for(prompt, timeout=timeout_ms / 1000)
        except TimeoutError:
            logger.info(f"⏱ Prompt for '{variable_name}' timed out")
            result = PromptResult(PromptAction.TIMEOUT, value)

        if self.event_bus is not None:
            await self.event_bus.emit_interaction_resolved(
                node_id=node_id,
                variable=variable_name,
                direction=direction,
                action=result.action.value,
            )
        return result

    async def _gate_input(self, node_id: str, variable_name: str, value: Any, timeout_ms: int) -> Any:
        try:
            result = await self._ask(
                node_id,
                variable_name,
                "input",
                self.gate.show_input_prompt(node_id, variable_name, value, timeout_ms),
                value,
                timeout_ms,
            )
        except InteractionCancelled as e:
            logger.warning(f"⚠ Input prompt for '{variable_name}' cancelled: {e}")
            return value

        if result.action != PromptAction.CONFIRM:
            return value

        if result.value != value:
            try:
                await self.storage.update_item(variable_name, result.value)
            except (VariableError, StorageBackendError) as e:
                logger.warning(f"⚠ Could not persist edited '{variable_name}': {e}")
        return result.value

    # === INPUTS ===

    async def resolve_inputs(
        self,
        node: WorkflowNode,
        graph: GraphSpec,
        upstream_outputs: dict[str, dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Build the input bag for ``node``.

        Args:
            node: Node about to execute
            graph: The graph (for connections into the node)
            upstream_outputs: node_id → output bag of nodes finished this run
        """
        binding = self.storage.get_node_binding(node.id)
        inputs: dict[str, Any] = {}

        for input_name in node.input_names:
            variable_name = binding.input_variable(input_name) if binding else None
            if variable_name:
                item = self.storage.get_item(variable_name)
                if item is None:
                    logger.warning(
                        f"⚠ Input '{input_name}' of {node.id} is bound to unknown "
                        f"variable '{variable_name}'"
                    )
                else:
                    try:
                        value = await self.storage.get_item_value(variable_name)
                    except (VariableError, StorageBackendError) as e:
                        logger.error(f"✗ Could not read '{variable_name}' for {node.id}: {e}")
                    else:
                        if item.popup_config.input_popup:
                            value = await self._gate_input(
                                node.id, variable_name, value, item.popup_config.timeout_ms
                            )
                        inputs[input_name] = value
                        continue

            connection = graph.get_connection_into(node.id, input_name)
            if connection is not None:
                outputs = upstream_outputs.get(connection.from_node, {})
                if connection.from_output in outputs:
                    inputs[input_name] = outputs[connection.from_output]
                    continue

            if input_name in node.spec.defaults:
                inputs[input_name] = node.spec.defaults[input_name]

        return inputs

    # === OUTPUTS ===

    async def save_outputs(
        self,
        node: WorkflowNode,
        outputs: dict[str, Any],
        created: set[str] | None = None,
    ) -> list[str]:
        """
        Write bound outputs to their variables.

        Args:
            node: Node that produced ``outputs``
            outputs: The node's output bag
            created: Variables created so far this run; updated in place

        Returns:
            Names of the variables written
        """
        binding = self.storage.get_node_binding(node.id)
        if binding is None:
            return []
        created = created if created is not None else set()
        saved: list[str] = []

        for output_name in binding.output_mappings:
            variable_name = binding.output_variable(output_name)
            if not variable_name:
                continue
            value = outputs.get(output_name)
            if value is None or value == NO_OUTPUT:
                continue

            try:
                value = parse_output_value(value, binding.output_parse.get(output_name))

                item = self.storage.get_item(variable_name)
                if item is not None and item.popup_config.output_popup:
                    result = await self._ask(
                        node.id,
                        variable_name,
                        "output",
                        self.gate.show_output_prompt(
                            node.id, variable_name, value, item.popup_config.timeout_ms
                        ),
                        value,
                        item.popup_config.timeout_ms,
                    )
                    if result.action == PromptAction.CONFIRM:
                        value = result.value
                    elif result.action == PromptAction.CLEAR:
                        value = self._empty_value(item.type)
                    else:
                        logger.info(f"Keeping prior value of '{variable_name}' ({result.action})")
                        continue

                if output_name == IMAGE_OUTPUT and isinstance(value, list) and value:
                    value = await self._register_images(node.id, variable_name, value, created)

                await self._store(node.id, output_name, variable_name, value, created)
                saved.append(variable_name)
            except InteractionCancelled as e:
                logger.warning(f"⚠ Output prompt for '{variable_name}' cancelled: {e}")
            except (VariableError, StorageBackendError) as e:
                logger.error(f"✗ Could not save {node.id}.{output_name} to '{variable_name}': {e}")

        return saved

    def _empty_value(self, type_name: str) -> Any:
        var_type = self.storage.types.get(type_name)
        return var_type.default() if var_type is not None else ""

    async def _store(
        self, node_id: str, output_name: str, variable_name: str, value: Any, created: set[str]
    ) -> None:
        if self.storage.has_item(variable_name):
            await self.storage.update_item(variable_name, value)
        else:
            await self.storage.create_item(
                variable_name,
                self.storage.types.infer_type(value),
                value,
                description=f"Output '{output_name}' of node {node_id}",
            )
            created.add(variable_name)
        logger.info(f"✓ Saved {node_id}.{output_name} → '{variable_name}'")

    # === IMAGE ARRAYS ===

    async def _image_payload(self, image: dict[str, Any]) -> tuple[bytes | None, str]:
        """Bytes for one image element, if it carries or can fetch them."""
        encoded = image.get("b64_json") or image.get("base64")
        if isinstance(encoded, str):
            try:
                return base64.b64decode(encoded), "image/png"
            except (binascii.Error, ValueError) as e:
                logger.warning(f"⚠ Undecodable base64 image: {e}")
                return None, ""

        data = image.get("data")
        if isinstance(data, bytes):
            return data, image.get("mime_type", "image/png")

        url = image.get("url")
        if isinstance(url, str) and self.download_media and self.media_loader is not None:
            try:
                body, content_type = await self.media_loader.fetch_bytes(url)
            except httpx.HTTPError as e:
                logger.warning(f"⚠ Could not download {url}: {e}")
                return None, ""
            mime = content_type or mime_from_extension(extract_file_extension(url, content_type))
            return body, mime

        return None, ""

    async def _register_images(
        self, node_id: str, variable_name: str, images: list[Any], created: set[str]
    ) -> list[Any]:
        timestamp = int(time.time() * 1000)
        registered: list[Any] = []
        prompts: list[str] = []

        for index, image in enumerate(images):
            if not isinstance(image, dict):
                registered.append(image)
                continue

            element = {
                key: value
                for key, value in image.items()
                if key not in ("b64_json", "base64", "data")
            }
            element.update(
                {
                    "type": "image",
                    "reference_id": f"img_{timestamp}_{index}",
                    "file_name": f"{variable_name}_{timestamp}_{index + 1}.png",
                    "status": "referenced",
                }
            )

            payload, mime = await self._image_payload(image)
            if payload is not None:
                reference = await self.storage.store_media(
                    variable_name, payload, mime_type=mime, original_name=element["file_name"]
                )
                element.update(
                    {"status": "downloaded", "media_id": reference.media_id, "size": reference.size}
                )

            if isinstance(image.get("revised_prompt"), str):
                prompts.append(image["revised_prompt"])
            registered.append(element)

        if prompts:
            await self._store_revised_prompts(node_id, variable_name, prompts, created)

        logger.info(f"✓ Registered {len(registered)} images for '{variable_name}'")
        return registered

    async def _store_revised_prompts(
        self, node_id: str, images_variable: str, prompts: list[str], created: set[str]
    ) -> None:
        name = revised_prompt_variable(images_variable)
        value: Any = prompts[0] if len(prompts) == 1 else prompts
        item = self.storage.get_item(name)
        if item is not None and item.readonly:
            logger.info(f"Revised prompt variable '{name}' is readonly, not updating")
            return
        try:
            var_type = self.storage.types.get(item.type) if item is not None else None
            if var_type is not None and var_type.validator(value):
                await self.storage.update_item(name, value)
            else:
                if item is not None:
                    await self.storage.delete_item(name)
                await self.storage.create_item(
                    name,
                    self.storage.types.infer_type(value),
                    value,
                    description=f"Revised prompt from node {node_id}",
                )
                created.add(name)
        except (VariableError, StorageBackendError) as e:
            logger.warning(f"⚠ Could not save revised prompt to '{name}': {e}")
