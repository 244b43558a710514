"""Entry point for `python -m meeting_to_demo` and the `m2d` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from meeting_to_demo import OrchestratorService, RunRecord
from meeting_to_demo.errors import OrchestratorError, RunNotFoundError
from meeting_to_demo.settings import RuntimeSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive meeting-to-demo runs through their approval gates")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    start_meeting = sub.add_parser("start-meeting", help="Import a meeting's features; the run waits at gate0")
    start_meeting.add_argument("meeting_ref", help="Meeting identifier understood by the meeting source")

    start_text = sub.add_parser("start-text", help="Format freeform text into a brief, scrub and enrich it")
    _add_text_input(start_text)

    start_json = sub.add_parser("start-json", help="Create a run from a JSON export of features or action items")
    start_json.add_argument("--json", dest="json_text", default=None, help="Inline JSON document")
    start_json.add_argument("--file", type=Path, default=None, help="Path to a JSON document")

    start_manual = sub.add_parser("start-manual", help="Create a run from a single hand-written feature")
    start_manual.add_argument("--title", required=True)
    start_manual.add_argument("--description", default="")
    start_manual.add_argument("--priority", default="medium", choices=["low", "medium", "high"])

    phase_one = sub.add_parser("phase-one", help="Generate a PRD from text and pause for review")
    _add_text_input(phase_one)

    approve_prd = sub.add_parser("approve-prd", help="Approve a reviewed PRD and build the prototype")
    approve_prd.add_argument("run_id")
    _add_approval_options(approve_prd)

    approve_gate = sub.add_parser("approve-gate", help="Approve a gate and run its automatic steps")
    approve_gate.add_argument("run_id")
    approve_gate.add_argument("gate", help="gate0..gate5 or the gate state name")
    approve_gate.add_argument(
        "--select",
        type=int,
        nargs="+",
        default=None,
        help="gate1 only: indices of the brief features to keep",
    )
    _add_approval_options(approve_gate)

    get = sub.add_parser("get", help="Print one run record")
    get.add_argument("run_id")

    sub.add_parser("list", help="List runs, newest first")

    update = sub.add_parser("update", help="Merge a JSON object of field corrections into a run")
    update.add_argument("run_id")
    update.add_argument("data", help="JSON object with the fields to replace")

    return parser.parse_args(argv)


def _add_text_input(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("text", nargs="?", default=None, help="Inline request text")
    parser.add_argument("--file", type=Path, default=None, help="Read request text from a file")


def _add_approval_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--approver", default=None, help="Defaults to M2D_APPROVER")
    parser.add_argument("--comments", default=None)


def load_text(*, text: str | None, file: Path | None, label: str = "text") -> str:
    if text is not None and file is not None:
        raise ValueError(f"{label} cannot be combined with --file input")
    if file is not None:
        if not file.is_file():
            raise FileNotFoundError(f"Requested input file does not exist: {file}")
        return file.read_text(encoding="utf-8")
    if text is None:
        raise ValueError(f"either {label} or --file is required")
    return text


def _summary(record: RunRecord) -> dict[str, str]:
    return {
        "run_id": record.run_id,
        "status": record.status.value,
        "stage": record.stage.value,
        "title": record.feature_brief.title,
        "updated_at": record.updated_at.isoformat(),
    }


def dispatch(service: OrchestratorService, args: argparse.Namespace) -> RunRecord | list[dict[str, str]]:
    command = args.command
    if command == "start-meeting":
        return service.start_run(args.meeting_ref)
    if command == "start-text":
        return service.start_run_from_text(load_text(text=args.text, file=args.file))
    if command == "start-json":
        return service.start_run_from_json(load_text(text=args.json_text, file=args.file, label="--json"))
    if command == "start-manual":
        return service.start_manual_run(args.title, args.description, priority=args.priority)
    if command == "phase-one":
        return service.run_phase_one(load_text(text=args.text, file=args.file))
    if command == "approve-prd":
        return service.approve_and_continue(args.run_id, approver=args.approver, comments=args.comments)
    if command == "approve-gate":
        return service.approve_gate(
            args.run_id,
            args.gate,
            approver=args.approver,
            comments=args.comments,
            selected_features=args.select,
        )
    if command == "get":
        record = service.get_run(args.run_id)
        if record is None:
            raise RunNotFoundError(args.run_id)
        return record
    if command == "list":
        return [_summary(record) for record in service.list_runs()]
    if command == "update":
        try:
            partial = json.loads(args.data)
        except json.JSONDecodeError as exc:
            raise ValueError(f"update data is not valid JSON: {exc}") from exc
        return service.update_run_fields(args.run_id, partial)
    raise ValueError(f"unknown command: {command}")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = RuntimeSettings.from_env()
        service = OrchestratorService.from_settings(settings, repo_root=Path.cwd())
    except (RuntimeError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    try:
        result = dispatch(service, args)
    except (OrchestratorError, OSError, ValueError) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1

    if isinstance(result, RunRecord):
        sys.stdout.write(result.model_dump_json(indent=2) + "\n")
    else:
        sys.stdout.write(json.dumps(result, indent=2) + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
