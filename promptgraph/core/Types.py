from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


class IOKind(Enum):
    TEXT = "text"
    IMAGE = "image"


class NodeType(Enum):
    TEXT_INPUT = "text-input"
    TEXT_OUTPUT = "text-output"
    IMAGE_INPUT = "image-input"
    IMAGE_OUTPUT = "image-output"
    PROMPT = "prompt"
    TOOL = "tool"
    TRANSLATOR = "translator"
    GENERATOR = "generator"
    VISUALIZER = "visualizer"
    INSPECTOR = "inspector"
    SCRIPT = "script"
    TABULAR = "tabular"
    COMMENT = "comment"

    @staticmethod
    def parse(value) -> 'NodeType':
        if isinstance(value, NodeType):
            return value
        try:
            return NodeType(value)
        except ValueError:
            raise ValueError(f"Unknown node type '{value}'")


@dataclass(frozen=True)
class NodeCapability:
    """
    Static description of what a node type can be wired to.
    The resolver and the run validation switch on this record, never on
    how a node is drawn.
    """
    input_kind: Optional[IOKind]
    output_kind: Optional[IOKind]
    input_handles: Tuple[str, ...] = ()
    output_handles: Tuple[str, ...] = ()
    executable: bool = False
    # data key holding template text, if the node has one
    template_field: Optional[str] = None
    # fixed tool type for specialised tool nodes
    tool_type: Optional[str] = None


CAPABILITIES: Dict[NodeType, NodeCapability] = {
    NodeType.TEXT_INPUT:   NodeCapability(None, IOKind.TEXT, (), ("output",)),
    NodeType.TEXT_OUTPUT:  NodeCapability(IOKind.TEXT, IOKind.TEXT, ("input",), ("output",)),
    NodeType.IMAGE_INPUT:  NodeCapability(None, IOKind.IMAGE, (), ("prompt",)),
    NodeType.IMAGE_OUTPUT: NodeCapability(IOKind.IMAGE, IOKind.IMAGE, ("input",), ("prompt",)),
    NodeType.PROMPT:       NodeCapability(IOKind.TEXT, IOKind.TEXT, (), ("prompt",),
                                          executable=True, template_field="prompt",
                                          tool_type="Text generation"),
    NodeType.TOOL:         NodeCapability(IOKind.TEXT, IOKind.TEXT, ("input",), ("prompt",),
                                          executable=True, template_field="prompt"),
    NodeType.TRANSLATOR:   NodeCapability(IOKind.TEXT, IOKind.TEXT, ("input",), ("prompt",),
                                          executable=True, template_field="prompt",
                                          tool_type="Text translation"),
    NodeType.GENERATOR:    NodeCapability(IOKind.TEXT, IOKind.TEXT, ("input",), ("prompt",),
                                          executable=True, template_field="prompt",
                                          tool_type="Text generation"),
    NodeType.VISUALIZER:   NodeCapability(IOKind.TEXT, None, ("input",), ()),
    NodeType.INSPECTOR:    NodeCapability(IOKind.TEXT, None, ("input",), ()),
    NodeType.SCRIPT:       NodeCapability(None, None),
    NodeType.TABULAR:      NodeCapability(None, IOKind.TEXT),
    NodeType.COMMENT:      NodeCapability(None, None),
}


def capability(node_type: NodeType) -> NodeCapability:
    return CAPABILITIES[node_type]


# --- TOOL SETTINGS ---
# Tool type -> (input kind, output kind) and the models offered for it.
# The first model listed is the default.

AVAILABLE_TOOLS: List[str] = [
    "Text generation",
    "Text translation",
    "Text-to-image",
    "Image-to-text",
    "Image-to-image",
]

TOOL_IO_KINDS: Dict[str, Tuple[IOKind, IOKind]] = {
    "Text generation":  (IOKind.TEXT,  IOKind.TEXT),
    "Text translation": (IOKind.TEXT,  IOKind.TEXT),
    "Text-to-image":    (IOKind.TEXT,  IOKind.IMAGE),
    "Image-to-text":    (IOKind.IMAGE, IOKind.TEXT),
    "Image-to-image":   (IOKind.IMAGE, IOKind.IMAGE),
}

TOOL_MODELS: Dict[str, List[str]] = {
    "Text generation":  ["gpt2", "tiiuae/falcon-7b-instruct"],
    "Text translation": ["t5-base", "Helsinki-NLP/opus-mt-zh-en"],
    "Text-to-image":    ["stabilityai/stable-diffusion-2", "runwayml/stable-diffusion-v1-5"],
    "Image-to-text":    ["nlpconnect/vit-gpt2-image-captioning"],
    "Image-to-image":   ["timbrooks/instruct-pix2pix", "lllyasviel/sd-controlnet-depth"],
}

DEFAULT_TOOL_TYPE = "Text generation"


def tool_type_for(node_type: NodeType, data: Dict) -> str:
    """Fixed tool type for specialised nodes, else the node's selected one."""
    fixed = CAPABILITIES[node_type].tool_type
    if fixed and node_type is not NodeType.TOOL:
        return fixed
    tool_type = data.get("tooltype") or DEFAULT_TOOL_TYPE
    if tool_type not in TOOL_IO_KINDS:
        raise ValueError(f"Unknown tool type '{tool_type}'")
    return tool_type


def default_model(tool_type: str) -> str:
    return TOOL_MODELS[tool_type][0]
