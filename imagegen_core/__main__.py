"""
imagegen_core - CLI Entry Point
Run with: python -m imagegen_core
"""

import argparse
import asyncio
import sys

from .exceptions import ImageGenError, VerbosityLevel, format_error_for_user, set_verbosity
from .logging_config import set_log_level


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagegen_core", description="Image generation orchestration core"
    )
    parser.add_argument("--version", "-v", action="store_true", help="Show version and exit")
    parser.add_argument("--debug", action="store_true", help="Show full error details")
    sub = parser.add_subparsers(dest="command")

    wf = sub.add_parser("workflows", help="Manage local pipeline workflow templates")
    wf_sub = wf.add_subparsers(dest="action", required=True)
    wf_sub.add_parser("list", help="List saved workflows")
    view = wf_sub.add_parser("view", help="Show editable parameters")
    view.add_argument("name", nargs="?")
    imp = wf_sub.add_parser("import", help="Import an API-format workflow JSON file")
    imp.add_argument("file")
    imp.add_argument("--name")
    mod = wf_sub.add_parser("modify", help="Set one node input (value is JSON)")
    mod.add_argument("node_id")
    mod.add_argument("input")
    mod.add_argument("value", help='JSON value, e.g. 30 or "\\"euler\\""')
    mod.add_argument("--name")
    rm = wf_sub.add_parser("delete", help="Delete a workflow")
    rm.add_argument("name")
    wf_sub.add_parser("checkpoints", help="List checkpoints known to the local pipeline")

    gen = sub.add_parser("generate", help="Generate an image")
    gen.add_argument("prompt")
    gen.add_argument("--backend", choices=["platform", "openai", "local"])
    gen.add_argument("--model")
    gen.add_argument("--size")
    gen.add_argument("--aspect-ratio")
    gen.add_argument("--quality")
    gen.add_argument("--reference", action="append", dest="reference_images")
    gen.add_argument("--negative-prompt")
    gen.add_argument("--workflow")
    return parser


def _print_progress(elapsed: float, message: str):
    print(f"[{elapsed:5.0f}s] {message}", file=sys.stderr)


async def _run(args) -> int:
    from .tools import ImageTools

    tools = ImageTools()
    try:
        if args.command == "generate":
            result = await tools.generate_image(
                args.prompt,
                model=args.model,
                size=args.size,
                aspect_ratio=args.aspect_ratio,
                quality=args.quality,
                reference_images=args.reference_images,
                negative_prompt=args.negative_prompt,
                backend=args.backend,
                workflow=args.workflow,
                on_progress=_print_progress,
            )
            print(f"Generated {result.mime_type} ({result.size_bytes} bytes) via {result.backend}")
            if result.saved_path:
                print(f"Saved to: {result.saved_path}")
            if result.image_url:
                print(f"Image URL: {result.image_url}")
            for warning in result.warnings:
                print(f"Warning: {warning}")
        elif args.action == "list":
            print(tools.list_workflows_text())
        elif args.action == "view":
            print(tools.view_workflow(args.name))
        elif args.action == "import":
            print(tools.import_workflow(args.file, args.name).to_text())
        elif args.action == "modify":
            print(tools.modify_workflow(args.node_id, args.input, args.value, args.name).to_text())
        elif args.action == "delete":
            print(tools.delete_workflow(args.name))
        elif args.action == "checkpoints":
            for name in await tools.list_checkpoints():
                print(name)
    finally:
        await tools.aclose()
    return 0


def main():
    parser = _build_parser()
    args = parser.parse_args()

    if args.debug:
        set_verbosity(VerbosityLevel.DEVELOPER)
        set_log_level("DEBUG")

    if args.version:
        from . import __version__

        print(f"imagegen-core v{__version__}")
        sys.exit(0)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        sys.exit(asyncio.run(_run(args)))
    except ImageGenError as e:
        print(format_error_for_user(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
