from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# A link to another node's output: [node_id, output_index]
NodeLink = list[Any]


class NodeInputs(BaseModel):
    # Inputs we don't know about are forwarded untouched.
    model_config = ConfigDict(extra="allow", protected_namespaces=())

    cfg: int | float | None = None
    denoise: float | None = None
    latent_image: NodeLink | None = None
    model: NodeLink | None = None
    negative: NodeLink | None = None
    positive: NodeLink | None = None
    sampler_name: str | None = None
    scheduler: str | None = None
    seed: int | None = None
    steps: int | None = None
    ckpt_name: str | None = None
    batch_size: int | None = None
    height: int | None = None
    width: int | None = None
    clip: NodeLink | None = None
    text: str | None = None
    filename_prefix: str | None = None
    images: NodeLink | None = None
    samples: NodeLink | None = None
    vae: NodeLink | None = None


class PromptNode(BaseModel):
    model_config = ConfigDict(extra="allow")

    class_type: str
    inputs: NodeInputs = Field(default_factory=NodeInputs)


class Workflow(BaseModel):
    nodes: dict[str, PromptNode]

    def to_prompt(self) -> dict[str, Any]:
        """Serialize to the bare node mapping ComfyUI expects in /prompt.

        Fields the workflow never set are left out; everything it did set,
        nulls and unknown keys included, is passed through as given.
        """
        prompt = {}
        for node_id, node in self.nodes.items():
            data = node.model_dump(exclude_unset=True)
            data.setdefault("inputs", {})
            prompt[node_id] = data
        return prompt


class ImageRef(BaseModel):
    filename: str
    subfolder: str
    type: str


class ProcessRequest(BaseModel):
    workflow: str
    server: str | None = None


class ProcessResponse(BaseModel):
    message: str
    # base64 encoded image bytes, keyed by output node id
    output: dict[str, list[str]]
