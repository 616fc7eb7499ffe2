import json
import logging
import random

from pydantic import ValidationError

from comfyui_relay.errors import InvalidWorkflowError, MissingNodeError
from comfyui_relay.models import Workflow

logger = logging.getLogger(__name__)

# The sampler node every submitted workflow must carry
REQUIRED_NODE_ID = "3"
REQUIRED_NODE_NAME = "KSampler"

DEFAULT_CFG = 8
DEFAULT_DENOISE = 1.0
DEFAULT_SAMPLER_NAME = "euler"
DEFAULT_SCHEDULER = "normal"
DEFAULT_STEPS = 20
DEFAULT_BATCH_SIZE = 1
DEFAULT_WIDTH = 512
DEFAULT_HEIGHT = 512
DEFAULT_CKPT_NAME = "v1-5-pruned-emaonly.ckpt"
DEFAULT_FILENAME_PREFIX = "ComfyUI"
DEFAULT_NEGATIVE_TEXT = "bad hands"
MAX_SEED = 2**63 - 1


def parse_workflow(text: str) -> Workflow:
    """Parse workflow JSON, either the bare ComfyUI API mapping or wrapped as {"nodes": {...}}."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise InvalidWorkflowError("Invalid workflow JSON") from e

    if not isinstance(data, dict):
        raise InvalidWorkflowError("Invalid workflow JSON")

    wrapped = data.get("nodes")
    if isinstance(wrapped, dict) and "class_type" not in wrapped:
        data = wrapped

    try:
        return Workflow.model_validate({"nodes": data})
    except ValidationError as e:
        raise InvalidWorkflowError(f"Invalid workflow JSON: {e}") from e


def complete_workflow(workflow: Workflow) -> Workflow:
    if REQUIRED_NODE_ID not in workflow.nodes:
        raise MissingNodeError(REQUIRED_NODE_ID, REQUIRED_NODE_NAME)

    logger.debug(f"Workflow has {len(workflow.nodes)} nodes")
    return workflow


def parse_size(size_str):
    """Parse a size string in the format 'widthxheight'."""
    try:
        width, height = map(int, size_str.split("x"))
        return width, height
    except ValueError:
        raise ValueError("Size must be in the format 'widthxheight', e.g., '512x512'.") from None


def default_workflow(
    text: str,
    negative_text: str = DEFAULT_NEGATIVE_TEXT,
    seed: int | None = None,
    ckpt_name: str = DEFAULT_CKPT_NAME,
    steps: int = DEFAULT_STEPS,
    cfg: int | float = DEFAULT_CFG,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Workflow:
    """Build the standard text-to-image graph: checkpoint, two text encoders, sampler, decode, save."""
    if seed is None:
        seed = random.randint(0, MAX_SEED)
    logger.info(
        f"Using model {ckpt_name} with {batch_size} images of size {width}x{height} and seed {seed}."
    )

    prompt = {
        "3": {
            "class_type": "KSampler",
            "inputs": {
                "cfg": cfg,
                "denoise": DEFAULT_DENOISE,
                "latent_image": ["5", 0],
                "model": ["4", 0],
                "negative": ["7", 0],
                "positive": ["6", 0],
                "sampler_name": DEFAULT_SAMPLER_NAME,
                "scheduler": DEFAULT_SCHEDULER,
                "seed": seed,
                "steps": steps,
            },
        },
        "4": {
            "class_type": "CheckpointLoaderSimple",
            "inputs": {
                "ckpt_name": ckpt_name,
            },
        },
        "5": {
            "class_type": "EmptyLatentImage",
            "inputs": {
                "batch_size": batch_size,
                "height": height,
                "width": width,
            },
        },
        "6": {
            "class_type": "CLIPTextEncode",
            "inputs": {
                "clip": ["4", 1],
                "text": text,
            },
        },
        "7": {
            "class_type": "CLIPTextEncode",
            "inputs": {
                "clip": ["4", 1],
                "text": negative_text,
            },
        },
        "8": {
            "class_type": "VAEDecode",
            "inputs": {"samples": ["3", 0], "vae": ["4", 2]},
        },
        "9": {
            "class_type": "SaveImage",
            "inputs": {"filename_prefix": DEFAULT_FILENAME_PREFIX, "images": ["8", 0]},
        },
    }
    return Workflow.model_validate({"nodes": prompt})
