"""Command-line entry point for the HCC pipeline.

Usage:
    hcc run essay.md --instructions "Expand to about 8,000 words" --output out.md
    hcc status <job_id>
    hcc cancel <job_id>
    hcc resume <job_id>
    hcc list

Jobs and graph checkpoints are kept in SQLite under the data directory
(``HCC_DATA_DIR``) unless ``--in-memory`` is given, so a run interrupted in
one process can be resumed from another.
"""

import argparse
import logging
import sys
from pathlib import Path

from hcc.config import PipelinePolicy, settings
from hcc.errors.exceptions import HCCError
from hcc.generation.audit import CompositeAuditSink, LoggingAuditSink
from hcc.generation.claude import AnthropicGenerator
from hcc.graphs.orchestrator import PipelineOrchestrator
from hcc.memory.checkpointer import get_checkpointer
from hcc.memory.store import StoreAuditSink, get_job_store
from hcc.state.enums import CoherenceMode, PipelineStage

logger = logging.getLogger(__name__)


def build_orchestrator(persistent: bool = True) -> PipelineOrchestrator:
    """Orchestrator over the Anthropic generator with audit to log and store."""
    store = get_job_store(persistent=persistent)
    audit = CompositeAuditSink(LoggingAuditSink(), StoreAuditSink(store))
    return PipelineOrchestrator(
        generator=AnthropicGenerator(),
        store=store,
        policy=PipelinePolicy.from_env(),
        audit=audit,
        checkpointer=get_checkpointer(persistent=persistent),
    )


def _print_snapshot(orchestrator: PipelineOrchestrator, job_id: str) -> None:
    print(orchestrator.snapshot(job_id).model_dump_json(indent=2))


def _write_output(orchestrator: PipelineOrchestrator, job_id: str, output: str | None) -> None:
    job = orchestrator.store.load_job(job_id)
    final = job.stage_record(PipelineStage.BULLETPROOF).output_text
    if not final:
        return
    if output:
        Path(output).write_text(final, encoding="utf-8")
        print(f"Final text written to {output}")
    else:
        print(final)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hcc",
        description="Four-stage hierarchical coherence pipeline: reconstruct, object, respond, bulletproof.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="Keep jobs in memory only (nothing survives the process)",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (default: HCC_LOG_LEVEL or INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Create a job from a file and run it")
    run.add_argument("path", help="Document to transform")
    run.add_argument("--instructions", default="", help="Custom instructions, e.g. length targets")
    run.add_argument("--audience", default="", help="Target audience")
    run.add_argument("--objective", default="", help="Objective of the output")
    run.add_argument(
        "--mode",
        choices=[m.value for m in CoherenceMode],
        default=None,
        help="Coherence mode tracked chunk by chunk",
    )
    run.add_argument("--output", default=None, help="Write the final text here instead of stdout")

    for name, text in (
        ("status", "Show per-stage, per-chunk and per-objection status"),
        ("cancel", "Cancel a job at its next chunk boundary"),
        ("resume", "Resume a paused or interrupted job"),
    ):
        command = commands.add_parser(name, help=text)
        command.add_argument("job_id")
        if name == "resume":
            command.add_argument("--output", default=None, help="Write the final text here instead of stdout")

    commands.add_parser("list", help="List known jobs")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command in ("run", "resume"):
        problems = settings.validate()
        if problems:
            print("Configuration errors:\n" + "\n".join(f"- {p}" for p in problems), file=sys.stderr)
            return 2

    orchestrator = build_orchestrator(persistent=not args.in_memory)
    try:
        if args.command == "run":
            text = Path(args.path).read_text(encoding="utf-8")
            job = orchestrator.create_job(
                text,
                custom_instructions=args.instructions,
                target_audience=args.audience,
                objective=args.objective,
                coherence_mode=args.mode,
            )
            print(f"Job {job.job_id}")
            job = orchestrator.run(job.job_id)
            print(f"Status: {job.status.value}")
            _write_output(orchestrator, job.job_id, args.output)
        elif args.command == "resume":
            job = orchestrator.resume(args.job_id)
            print(f"Status: {job.status.value}")
            _write_output(orchestrator, job.job_id, args.output)
        elif args.command == "cancel":
            job = orchestrator.cancel(args.job_id)
            print(f"Cancel requested for {job.job_id}")
        elif args.command == "status":
            _print_snapshot(orchestrator, args.job_id)
        elif args.command == "list":
            for job in orchestrator.store.list_jobs():
                print(f"{job.job_id}  {job.status.value:<24} stage {job.current_stage}  {job.created_at.isoformat()}")
    except (HCCError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
