"""
Command-line entry point.

    python cli.py design ./my-app --prd PRD.md [--resume | --regenerate]
    python cli.py build-app ./my-app --description "..." [--resume | --regenerate]
    python cli.py status ./my-app [--pipeline build-app]
    python cli.py clear ./my-app [--pipeline build-app]

Ctrl-C stops the run at the next step boundary (the checkpoint is kept);
a second Ctrl-C aborts immediately.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

import config
from models.schemas import PipelineRequest
from workflows import pipeline as runner

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def _read(path: str | None) -> str:
    if not path:
        return ""
    return Path(path).read_text(encoding="utf-8")


def _add_mode_flags(parser: argparse.ArgumentParser) -> None:
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--resume", action="store_true", help="continue from the saved checkpoint")
    mode.add_argument("--regenerate", action="store_true", help="discard saved progress and start over")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("phase-pilot", description="Resumable AI generation pipelines")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("design", help="generate a design manifest from a PRD")
    p.add_argument("project", type=Path)
    p.add_argument("--prd", required=True, help="PRD markdown file")
    p.add_argument("--branding", help="brand guidelines file")
    p.add_argument("--types", help="type definitions file")
    p.add_argument("--components", help="component list file")
    _add_mode_flags(p)

    p = sub.add_parser("build-app", help="scaffold an application from a description")
    p.add_argument("project", type=Path)
    p.add_argument("--description", required=True)
    p.add_argument("--name", help="project name (defaults to the directory name)")
    p.add_argument("--requirements", help="requirements file")
    p.add_argument("--framework", default="nextjs")
    p.add_argument("--with-tests", action="store_true")
    p.add_argument("--skip-validation", action="store_true")
    p.add_argument("--interactive", action="store_true")
    _add_mode_flags(p)

    for name, help_text in (("status", "show saved progress"), ("clear", "delete saved progress")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("project", type=Path)
        p.add_argument("--pipeline", default="design", choices=sorted(runner.PIPELINES))

    return parser


def _request(args: argparse.Namespace) -> PipelineRequest:
    if args.command == "design":
        inputs = {
            "prd": _read(args.prd),
            "branding": _read(args.branding),
            "types": _read(args.types),
            "component_list": _read(args.components),
        }
    else:
        inputs = {
            "project_name": args.name or args.project.resolve().name,
            "description": args.description,
            "requirements": _read(args.requirements),
            "framework": args.framework,
            "with_tests": args.with_tests,
            "skip_validation": args.skip_validation,
            "interactive": args.interactive,
        }
    return PipelineRequest(
        pipeline=args.command,
        project_path=str(args.project),
        inputs=inputs,
        resume=args.resume,
        regenerate=args.regenerate,
    )


def _install_cancel_handler() -> threading.Event:
    cancel = threading.Event()

    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        print("\nStopping after the current step (Ctrl-C again to abort)...", file=sys.stderr)
        cancel.set()

    signal.signal(signal.SIGINT, handler)
    return cancel


def _report(record: dict) -> int:
    result = record.get("result") or {}
    print(f"\n=== {record['pipeline'].upper()} RUN ===")
    print(f"id: {record['run_id']}")
    print(f"status: {record['status']}")
    if result:
        print(f"completed: {len(result.get('completed_steps', []))} "
              f"(cached {len(result.get('cached_steps', []))}, "
              f"skipped {len(result.get('skipped_steps', []))})")
        if result.get("fallbacks_used"):
            print(f"fallbacks used: {', '.join(result['fallbacks_used'])}")
        if result.get("failed_steps"):
            print(f"optional steps failed: {', '.join(result['failed_steps'])}")
    if record.get("manifest_file"):
        print(f"manifest: {record['manifest_file']}")

    if record["status"] == "completed":
        return EXIT_OK
    if record["status"] == "cancelled":
        print("Progress saved. Continue with --resume.")
        return EXIT_CANCELLED

    print(f"error: {record.get('error')}")
    failure = record.get("failure")
    if failure:
        print(f"\n{failure['label']} at step '{record['failed_step']}'")
        for tip in failure.get("suggestions", []):
            print(f"  - {tip}")
        print("\nProgress saved. Continue with --resume once the problem is fixed.")
    return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format=config.LOG_FORMAT,
        datefmt="%H:%M:%S",
    )

    if args.command == "status":
        info = runner.describe_checkpoint(str(args.project), args.pipeline)
        print(info["summary"])
        if info.get("stale"):
            print(f"Warning: state is older than {config.CHECKPOINT_STALE_HOURS:g} hours; consider --regenerate")
        return EXIT_OK

    if args.command == "clear":
        cleared = runner.clear_checkpoint(str(args.project), args.pipeline)
        print("Checkpoint cleared" if cleared else "No checkpoint to clear")
        return EXIT_OK

    args.project.mkdir(parents=True, exist_ok=True)
    record = runner.execute_pipeline(_request(args), cancel_event=_install_cancel_handler())
    return _report(record)


if __name__ == "__main__":
    sys.exit(main())
