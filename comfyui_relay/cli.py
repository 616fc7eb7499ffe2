import argparse
import json
import logging
import os
import sys

from pydantic import BaseModel, ValidationError

from comfyui_relay import __version__, comfy
from comfyui_relay.errors import RelayError
from comfyui_relay.server import DEFAULT_COMFY_SERVER, create_app
from comfyui_relay.workflow import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CFG,
    DEFAULT_CKPT_NAME,
    DEFAULT_NEGATIVE_TEXT,
    DEFAULT_STEPS,
    default_workflow,
    parse_size,
)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_OUTPUT_DIR = "."
DEFAULT_SIZE = "512x512"

logger = logging.getLogger(__name__)


class RelayArgs(argparse.Namespace):
    # Annotations only: class-level values would stop argparse from filling in defaults
    command: str
    config: str | None
    comfy_server: str
    log_level: str
    host: str
    port: int
    debug: bool
    text: str
    negative_text: str
    seed: int | None
    ckpt_name: str
    steps: int
    cfg: float
    size: tuple[int, int]
    batch_size: int
    output_dir: str


class RelayConfigFile(BaseModel):
    comfy_server: str | None = None
    host: str | None = None
    port: int | None = None
    log_level: str | None = None
    output_dir: str | None = None


def load_config(path: str) -> RelayConfigFile:
    with open(path, "r") as f:
        return RelayConfigFile(**json.load(f))


def common_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument('-c', '--config', type=str, default=None, help='Path to a JSON configuration file')
    parser.add_argument('--comfy_server', type=str, default=DEFAULT_COMFY_SERVER, help='ComfyUI server address')
    parser.add_argument('--log_level', type=str, default=DEFAULT_LOG_LEVEL, help='Logging level')
    return parser


def workflow_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument('text', type=str, help='Positive prompt text')
    parser.add_argument('--negative_text', type=str, default=DEFAULT_NEGATIVE_TEXT, help='Negative prompt text')
    parser.add_argument('--seed', type=int, default=None, help='Sampler seed, random when omitted')
    parser.add_argument('--ckpt_name', type=str, default=DEFAULT_CKPT_NAME, help='Checkpoint to load')
    parser.add_argument('--steps', type=int, default=DEFAULT_STEPS, help='Sampling steps')
    parser.add_argument('--cfg', type=float, default=DEFAULT_CFG, help='Classifier-free guidance scale')
    parser.add_argument('--size', type=parse_size, default=DEFAULT_SIZE, help="Image size as 'widthxheight'")
    parser.add_argument('--batch_size', type=int, default=DEFAULT_BATCH_SIZE, help='Images per run')
    return parser


def base_parser(defaults: dict | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='comfyui-relay', description='Relay workflows to a ComfyUI server')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest='command', required=True)

    common = common_parser()
    workflow = workflow_parser()

    serve = subparsers.add_parser('serve', parents=[common], help='Run the HTTP relay')
    serve.add_argument('--host', type=str, default=DEFAULT_HOST, help='Address to listen on')
    serve.add_argument('--port', type=int, default=DEFAULT_PORT, help='Port to listen on')
    serve.add_argument('--debug', action='store_true', help='Run Flask in debug mode')

    subparsers.add_parser('queue', parents=[common, workflow], help='Queue a text-to-image workflow and exit')

    generate = subparsers.add_parser('generate', parents=[common, workflow], help='Run a text-to-image workflow and save the images')
    generate.add_argument('--output_dir', type=str, default=DEFAULT_OUTPUT_DIR, help='Directory to save images in')

    if defaults:
        for subparser in (serve, generate, subparsers.choices['queue']):
            subparser.set_defaults(**defaults)

    return parser


def parse_args(argv=None) -> RelayArgs:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument('-c', '--config', type=str, default=None)
    known, _ = pre.parse_known_args(argv)

    defaults = None
    if known.config:
        try:
            defaults = load_config(known.config).model_dump(exclude_none=True)
        except (OSError, ValueError, ValidationError) as e:
            base_parser().error(f"could not load config file {known.config}: {e}")

    return base_parser(defaults).parse_args(argv, namespace=RelayArgs())


def build_workflow(args: RelayArgs):
    width, height = args.size
    return default_workflow(
        args.text,
        negative_text=args.negative_text,
        seed=args.seed,
        ckpt_name=args.ckpt_name,
        steps=args.steps,
        cfg=args.cfg,
        width=width,
        height=height,
        batch_size=args.batch_size,
    )


def serve(args: RelayArgs):
    app = create_app(args.comfy_server)
    logger.info(f"Relaying to {args.comfy_server}, listening on {args.host}:{args.port}")
    app.run(debug=args.debug, host=args.host, port=args.port)


def queue(args: RelayArgs):
    result = comfy.queue_prompt(args.comfy_server, build_workflow(args), comfy.new_client_id())
    print(f"Queued prompt: {result.get('prompt_id')}")


def generate(args: RelayArgs) -> list[str]:
    images = comfy.run_workflow(args.comfy_server, build_workflow(args))

    os.makedirs(args.output_dir, exist_ok=True)
    saved = []
    for node_id, image_list in images.items():
        for i, image_data in enumerate(image_list):
            filename = os.path.join(args.output_dir, f"{node_id}_image_{i}.png")
            with open(filename, 'wb') as f:
                f.write(image_data)
            print(f"Saved image: {filename}")
            saved.append(filename)

    return saved


COMMANDS = {
    'serve': serve,
    'queue': queue,
    'generate': generate,
}


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        COMMANDS[args.command](args)
    except RelayError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
