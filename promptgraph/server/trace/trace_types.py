"""
Trace event type definitions.
All events are plain dicts so they can be emitted over Socket.IO without Pydantic overhead.
"""
from typing import Literal, TypedDict, Union


class RunStartEvent(TypedDict):
    type: Literal["RUN_START"]
    nodeId: str
    instances: int
    ts: int


class InstanceCachedEvent(TypedDict):
    type: Literal["INSTANCE_CACHED"]
    nodeId: str
    key: str
    ts: int


class InstanceDoneEvent(TypedDict):
    type: Literal["INSTANCE_DONE"]
    nodeId: str
    key: str
    durationMs: float
    ts: int


class InstanceErrorEvent(TypedDict):
    type: Literal["INSTANCE_ERROR"]
    nodeId: str
    key: str
    error: str
    ts: int


class RunDoneEvent(TypedDict):
    type: Literal["RUN_DONE"]
    nodeId: str
    responses: int
    errors: int
    cached: int
    ts: int


class RunErrorEvent(TypedDict):
    type: Literal["RUN_ERROR"]
    nodeId: str
    error: str
    ts: int


class FlowLoadedEvent(TypedDict):
    type: Literal["FLOW_LOADED"]
    source: str
    warnings: list
    ts: int


class FlowSharedEvent(TypedDict):
    type: Literal["FLOW_SHARED"]
    uid: str
    ts: int


TraceEvent = Union[
    RunStartEvent,
    InstanceCachedEvent,
    InstanceDoneEvent,
    InstanceErrorEvent,
    RunDoneEvent,
    RunErrorEvent,
    FlowLoadedEvent,
    FlowSharedEvent,
]

TRACE_EVENT_TYPES = (
    "RUN_START",
    "INSTANCE_CACHED",
    "INSTANCE_DONE",
    "INSTANCE_ERROR",
    "RUN_DONE",
    "RUN_ERROR",
    "FLOW_LOADED",
    "FLOW_SHARED",
)
