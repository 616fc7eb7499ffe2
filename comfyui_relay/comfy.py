import io
import json
import logging
import uuid

import requests
import websocket  # NOTE: websocket-client (https://github.com/websocket-client/websocket-client)
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError

from comfyui_relay.errors import ComfyConnectionError, ComfyResponseError
from comfyui_relay.models import ImageRef, Workflow

logger = logging.getLogger(__name__)


def new_client_id() -> str:
    return uuid.uuid4().hex


def _request(method: str, url: str, **kwargs) -> requests.Response:
    try:
        response = requests.request(method, url, **kwargs)
    except requests.RequestException as e:
        raise ComfyConnectionError(f"{method} {url} failed: {e}") from e

    if not response.ok:
        raise ComfyResponseError(
            f"{method} {url} returned {response.status_code}: {response.text}"
        )
    return response


def _json(response: requests.Response) -> dict:
    try:
        data = response.json()
    except ValueError as e:
        raise ComfyResponseError(f"Invalid JSON from {response.url}: {e}") from e

    if not isinstance(data, dict):
        raise ComfyResponseError(f"Unexpected response from {response.url}: {data!r}")
    return data


def queue_prompt(server: str, prompt: Workflow, client_id: str) -> dict:
    p = {"prompt": prompt.to_prompt(), "client_id": client_id}
    response = _request("POST", f"http://{server}/prompt", json=p)
    return _json(response)


def get_image(server: str, filename: str, subfolder: str, folder_type: str) -> bytes:
    data = {"filename": filename, "subfolder": subfolder, "type": folder_type}
    url = f"http://{server}/view"
    logger.info(f"Fetching image {filename} from: {url}")

    return _request("GET", url, params=data).content


def get_history(server: str, prompt_id: str) -> dict:
    response = _request("GET", f"http://{server}/history/{prompt_id}")
    return _json(response)


def connect(server: str, client_id: str) -> websocket.WebSocket:
    ws = websocket.WebSocket()
    try:
        ws.connect(f"ws://{server}/ws?clientId={client_id}")
    except (websocket.WebSocketException, OSError) as e:
        raise ComfyConnectionError(f"Failed to connect to WebSocket: {e}") from e
    return ws


def wait_for_completion(ws: websocket.WebSocket, prompt_id: str):
    """Block until the server reports that nothing is executing for prompt_id. There is no timeout."""
    while True:
        try:
            out = ws.recv()
        except (websocket.WebSocketException, OSError) as e:
            raise ComfyConnectionError(
                f"WebSocket failed while waiting for prompt {prompt_id}: {e}"
            ) from e

        if not isinstance(out, str):
            continue  # Previews are binary data

        try:
            message = json.loads(out)
        except ValueError:
            logger.debug(f"Ignoring invalid message: {out[:100]!r}")
            continue

        if not isinstance(message, dict) or message.get("type") != "executing":
            continue

        data = message.get("data")
        if not isinstance(data, dict):
            continue

        logger.debug(f"Executing node {data.get('node')} for prompt {data.get('prompt_id')}")
        if data.get("node") is None and data.get("prompt_id") == prompt_id:
            return  # Execution is done


def describe_image(node_id: str, image_data: bytes):
    try:
        with Image.open(io.BytesIO(image_data)) as image:
            logger.info(f"Node {node_id} image size: {image.size}, mode: {image.mode}")
    except UnidentifiedImageError:
        logger.warning(f"Node {node_id} returned {len(image_data)} bytes that are not a known image format")


def get_images(server: str, ws: websocket.WebSocket, prompt: Workflow, client_id: str) -> dict[str, list[bytes]]:
    result = queue_prompt(server, prompt, client_id)
    prompt_id = result.get("prompt_id")
    if not isinstance(prompt_id, str):
        raise ComfyResponseError(f"No prompt_id in queue response: {result}")
    logger.info(f"Queued prompt {prompt_id} as client {client_id}")

    wait_for_completion(ws, prompt_id)

    history = get_history(server, prompt_id).get(prompt_id)
    if not isinstance(history, dict) or not isinstance(history.get("outputs"), dict):
        raise ComfyResponseError(f"No outputs in history for prompt {prompt_id}")

    output_images = {}
    for node_id, node_output in history["outputs"].items():
        if not isinstance(node_output, dict) or "images" not in node_output:
            continue
        if not isinstance(node_output["images"], list):
            raise ComfyResponseError(f"Images of node {node_id} are not a list")

        images_output = []
        for image in node_output["images"]:
            try:
                ref = ImageRef.model_validate(image)
            except ValidationError as e:
                raise ComfyResponseError(f"Bad image reference in node {node_id}: {e}") from e

            image_data = get_image(server, ref.filename, ref.subfolder, ref.type)
            describe_image(node_id, image_data)
            images_output.append(image_data)

        if images_output:
            output_images[node_id] = images_output

    return output_images


def run_workflow(server: str, prompt: Workflow, client_id: str | None = None) -> dict[str, list[bytes]]:
    client_id = client_id or new_client_id()
    ws = connect(server, client_id)
    try:
        return get_images(server, ws, prompt, client_id)
    finally:
        ws.close()
