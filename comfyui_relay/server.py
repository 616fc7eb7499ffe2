# Serve the relay page and the /api/process endpoint that forwards workflows to ComfyUI

import base64
import logging

from flask import Blueprint, Flask, current_app, jsonify, render_template, request
from pydantic import ValidationError

from comfyui_relay import __version__, comfy
from comfyui_relay.errors import RelayError
from comfyui_relay.models import ProcessRequest, ProcessResponse
from comfyui_relay.workflow import complete_workflow, parse_workflow

DEFAULT_COMFY_SERVER = "127.0.0.1:8188"
SUCCESS_MESSAGE = "Workflow processed successfully!"

logger = logging.getLogger(__name__)

bp = Blueprint("relay", __name__)


@bp.route("/", methods=["GET"])
def show_index_page():
    return render_template("index.html", default_server=current_app.config["COMFY_SERVER"])


@bp.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "version": __version__})


@bp.route("/api/process", methods=["POST"])
def process_workflow():
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        body = ProcessRequest.model_validate(data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    server = body.server or current_app.config["COMFY_SERVER"]
    if not server:
        return jsonify({"error": "No ComfyUI server address given"}), 400

    # Both checks run before anything touches the remote server
    workflow = complete_workflow(parse_workflow(body.workflow))

    logger.info(f"Relaying workflow with {len(workflow.nodes)} nodes to {server}")
    output_images = comfy.run_workflow(server, workflow)

    response = ProcessResponse(
        message=SUCCESS_MESSAGE,
        output={
            node_id: [base64.b64encode(image).decode("ascii") for image in images]
            for node_id, images in output_images.items()
        },
    )
    return jsonify(response.model_dump())


def handle_relay_error(e: RelayError):
    if e.status_code >= 500:
        logger.error(f"Relay failed: {e}")
    else:
        logger.info(f"Rejected request: {e}")
    return jsonify({"error": str(e)}), e.status_code


def create_app(comfy_server: str = DEFAULT_COMFY_SERVER) -> Flask:
    app = Flask(__name__)
    app.config["COMFY_SERVER"] = comfy_server
    app.register_blueprint(bp)
    app.register_error_handler(RelayError, handle_relay_error)
    return app


if __name__ == "__main__":
    create_app().run(debug=True, host="0.0.0.0", port=8080)
