import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Dict, List, Optional, Tuple

from .Brackets import ordered_placeholders, remove_placeholder
from .Cache import CacheEntry, ResponseCache, fingerprint
from .Errors import MissingInputError, ResolutionError, TypeMismatchError
from .Expander import PromptInstance, expand
from .GraphPrimitives import FlowNode, GraphSnapshot, GraphStore
from .Resolver import resolve
from .Types import IOKind, NodeType, TOOL_IO_KINDS, default_model, tool_type_for

logger = getLogger(__name__)

TOOL_INPUT_HANDLE = "input"
DEFAULT_TOOL_TEMPLATE = "{input}"

MISSING_INPUT_MESSAGE = (
    "You haven't specified the input(s) yet. \n"
    "Please add an input node and connect it to this one.\n"
)
MISSING_OUTPUT_MESSAGE = "You don't want to lose your output(s)! \nPlease add an output node."
MISSING_IMAGE_MESSAGE = "Please upload an image file in the image input node."

DISPLAY_TYPES = (NodeType.TEXT_OUTPUT, NodeType.IMAGE_OUTPUT)


@dataclass
class ExecRequest:
    node_id: str
    node_type: NodeType
    tool_type: str
    model: str
    prompt: str
    image: Any = None


@dataclass
class ExecResult:
    kind: str
    value: Any = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind != "error"

    @classmethod
    def error(cls, message: str) -> 'ExecResult':
        return cls(kind="error", message=message)


class ModelBackend(ABC):
    """Turns one bound prompt into a text or image response."""

    @abstractmethod
    async def invoke(self, request: ExecRequest) -> ExecResult:
        ...


@dataclass
class Job:
    instance: PromptInstance
    key: str
    image: Any = None


@dataclass
class RunPlan:
    node_id: str
    node_type: NodeType
    tool_type: str
    model: str
    template: str
    jobs: List[Job] = field(default_factory=list)
    output_targets: List[str] = field(default_factory=list)

    @property
    def instances(self) -> List[PromptInstance]:
        return [job.instance for job in self.jobs]


@dataclass
class InstanceOutcome:
    instance: PromptInstance
    key: str
    result: ExecResult
    cached: bool = False

    def to_response(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "kind": self.result.kind,
            "prompt": self.instance.text,
            "fill_history": dict(self.instance.fill_history),
        }
        if self.result.kind == "image":
            item["image"] = self.result.value
        else:
            item["text"] = self.result.value
        return item


@dataclass
class RunReport:
    node_id: str
    outcomes: List[InstanceOutcome] = field(default_factory=list)

    @property
    def responses(self) -> List[Dict[str, Any]]:
        return [o.to_response() for o in self.outcomes if o.result.ok]

    @property
    def errors(self) -> List[Dict[str, Any]]:
        return [{"prompt": o.instance.text, "error": o.result.message}
                for o in self.outcomes if not o.result.ok]

    @property
    def cached_count(self) -> int:
        return sum(1 for o in self.outcomes if o.cached)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "responses": self.responses,
            "errors": self.errors,
            "cached": self.cached_count,
        }


def _kind_name(kind: Optional[IOKind]) -> str:
    return kind.value if kind is not None else "none"


def _image_of(item: Any) -> Any:
    if isinstance(item, dict):
        return item.get("image") or item.get("text")
    return item


class FlowExecutor:
    """
    Prepares and runs executable nodes against a GraphStore.

    Resolution and cache lookups are synchronous; only backend dispatch is
    awaited. Identical fingerprints dispatched while one is still in flight
    share the same backend call.
    """

    def __init__(self, store: GraphStore, cache: ResponseCache, backend: ModelBackend, tracer=None):
        self.store = store
        self.cache = cache
        self.backend = backend
        self.tracer = tracer
        self._inflight: Dict[str, asyncio.Future] = {}

    def _fire(self, payload: Dict[str, Any]) -> None:
        if self.tracer is not None:
            self.tracer.fire(payload)

    # --- planning ---

    def _template_of(self, node: FlowNode, image_input: bool = False) -> str:
        text = node.data.get(node.capability.template_field or "prompt") or ""
        if image_input:
            # the image itself is the input; the prompt only carries the other fields
            return remove_placeholder(str(text), TOOL_INPUT_HANDLE)
        if not text and TOOL_INPUT_HANDLE in node.capability.input_handles:
            return DEFAULT_TOOL_TEMPLATE
        return str(text)

    def _instances(self, snapshot: GraphSnapshot, node: FlowNode, template: str) -> List[PromptInstance]:
        bindings = resolve(snapshot, node.id, ordered_placeholders(template))
        return expand(bindings, template)

    def _validate_tool(self, snapshot: GraphSnapshot, node: FlowNode,
                       tool_type: str) -> Tuple[List[Any], List[str]]:
        inputs = snapshot.get_incoming_edges(node.id, TOOL_INPUT_HANDLE)
        outputs = snapshot.get_outgoing_edges(node.id)

        message = ""
        if not inputs:
            message += MISSING_INPUT_MESSAGE
        if not outputs:
            message += MISSING_OUTPUT_MESSAGE
        if message:
            raise MissingInputError(message, node_id=node.id)

        input_node = snapshot.get_node(inputs[0].source)
        output_node = snapshot.get_node(outputs[0].target)
        if input_node is None or output_node is None:
            raise MissingInputError(MISSING_INPUT_MESSAGE, node_id=node.id)

        expected_in, expected_out = TOOL_IO_KINDS[tool_type]
        actual_in = input_node.capability.output_kind
        actual_out = output_node.capability.input_kind
        if actual_in is not expected_in or actual_out is not expected_out:
            raise TypeMismatchError(
                f"Expected input & output types are: {expected_in.value} & {expected_out.value}, "
                f"but actual types are {_kind_name(actual_in)} & {_kind_name(actual_out)}.",
                node_id=node.id,
            )

        images: List[Any] = []
        if expected_in is IOKind.IMAGE:
            for edge in inputs:
                images.extend(_image_of(v) for v in snapshot.get_output(edge.source, edge.source_handle))
            images = [img for img in images if img]
            if not images:
                raise MissingInputError(MISSING_IMAGE_MESSAGE, node_id=node.id)

        return images, [e.target for e in outputs]

    def prepare(self, node_id: str) -> RunPlan:
        node = self.store.require_node(node_id)
        if not node.capability.executable:
            raise ResolutionError(f"Node '{node_id}' of type '{node.type.value}' cannot be run",
                                  node_id=node_id)

        try:
            tool_type = tool_type_for(node.type, node.data)
        except ValueError as exc:
            raise TypeMismatchError(str(exc), node_id=node_id) from exc
        model = node.data.get("model") or default_model(tool_type)

        snapshot = self.store.snapshot()
        is_tool = TOOL_INPUT_HANDLE in node.capability.input_handles
        images: List[Any] = [None]
        targets: List[str] = []
        if is_tool:
            found, targets = self._validate_tool(snapshot, node, tool_type)
            if found:
                images = found
        else:
            targets = [e.target for e in snapshot.get_outgoing_edges(node_id)]

        image_input = images != [None]
        template = self._template_of(node, image_input)
        instances = self._instances(snapshot, node, template)

        plan = RunPlan(node_id, node.type, tool_type, model, template)
        for image in images:
            for instance in instances:
                key = fingerprint(node_id, instance, model=model, image=image)
                plan.jobs.append(Job(instance, key, image))

        displays = [snapshot.get_node(t) for t in targets]
        plan.output_targets = [n.id for n in displays if n is not None and n.type in DISPLAY_TYPES]
        return plan

    def preview(self, node_id: str) -> List[PromptInstance]:
        """Bound instances for a node, without validation or execution."""
        node = self.store.require_node(node_id)
        image_input = False
        if TOOL_INPUT_HANDLE in node.capability.input_handles:
            tool_type = node.data.get("tooltype") if node.type is NodeType.TOOL else node.capability.tool_type
            image_input = TOOL_IO_KINDS.get(tool_type or "", (IOKind.TEXT,))[0] is IOKind.IMAGE
        template = self._template_of(node, image_input)
        return self._instances(self.store.snapshot(), node, template)

    # --- execution ---

    async def _invoke(self, request: ExecRequest) -> ExecResult:
        try:
            result = await self.backend.invoke(request)
        except Exception as exc:
            logger.warning("backend failed for node %s: %s", request.node_id, exc)
            return ExecResult.error(str(exc) or exc.__class__.__name__)
        if result is None:
            return ExecResult.error("Backend returned no result")
        return result

    async def _dispatch(self, key: str, request: ExecRequest) -> ExecResult:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._invoke(request))
            self._inflight[key] = task
            task.add_done_callback(lambda _t: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _run_job(self, plan: RunPlan, job: Job) -> InstanceOutcome:
        entry = self.cache.get(job.key)
        if entry is not None:
            logger.debug("cache hit %s", job.key)
            self._fire({"type": "INSTANCE_CACHED", "nodeId": plan.node_id, "key": job.key})
            return InstanceOutcome(job.instance, job.key, ExecResult(entry.kind, entry.value), cached=True)

        logger.debug("cache miss %s", job.key)
        request = ExecRequest(plan.node_id, plan.node_type, plan.tool_type, plan.model,
                              job.instance.text, job.image)
        start = time.perf_counter()
        result = await self._dispatch(job.key, request)
        duration_ms = (time.perf_counter() - start) * 1000

        if result.ok:
            self.cache.put(job.key, CacheEntry(
                node_id=plan.node_id,
                kind=result.kind,
                value=result.value,
                prompt=job.instance.text,
                fill_history=dict(job.instance.fill_history),
                model=plan.model,
            ))
            self._fire({"type": "INSTANCE_DONE", "nodeId": plan.node_id, "key": job.key,
                        "durationMs": duration_ms})
        else:
            self._fire({"type": "INSTANCE_ERROR", "nodeId": plan.node_id, "key": job.key,
                        "error": result.message})
        return InstanceOutcome(job.instance, job.key, result)

    async def run_node(self, node_id: str) -> RunReport:
        try:
            plan = self.prepare(node_id)
        except ResolutionError as exc:
            self._fire({"type": "RUN_ERROR", "nodeId": node_id, "error": str(exc)})
            raise

        logger.info("running node %s: %d instance(s)", node_id, len(plan.jobs))
        self._fire({"type": "RUN_START", "nodeId": node_id, "instances": len(plan.jobs)})

        outcomes = await asyncio.gather(*(self._run_job(plan, job) for job in plan.jobs))
        report = RunReport(node_id, list(outcomes))
        self._write_back(plan, report)

        self._fire({"type": "RUN_DONE", "nodeId": node_id, "responses": len(report.responses),
                    "errors": len(report.errors), "cached": report.cached_count})
        return report

    def schedule_node(self, node_id: str) -> 'asyncio.Task[RunReport]':
        return asyncio.ensure_future(self.run_node(node_id))

    def _write_back(self, plan: RunPlan, report: RunReport) -> None:
        responses = report.responses
        for target in [plan.node_id] + plan.output_targets:
            if self.store.get_node(target) is None:
                logger.info("node %s was removed during the run; output dropped", target)
                continue
            self.store.set_output(target, responses)
