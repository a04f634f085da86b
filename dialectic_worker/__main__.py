"""Command line entry point.

Usage:
    python -m dialectic_worker run [--once]
    python -m dialectic_worker submit --project P --session S --stage thesis \\
        --model openai-gpt-4o --model anthropic-claude-sonnet-4-5 --seed-file prompt.md
    python -m dialectic_worker status JOB_ID
    python -m dialectic_worker list-models PROVIDER
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from dialectic_worker.errors import DialecticError
from dialectic_worker.jobs import job_manager
from dialectic_worker.jobs.dependencies import JobDependencies
from dialectic_worker.jobs.submission import submit_stage
from dialectic_worker.llm.factory import get_ai_provider_adapter, resolve_api_key
from dialectic_worker.worker import Worker

logger = logging.getLogger("dialectic_worker")


def _cmd_run(args: argparse.Namespace, deps: JobDependencies) -> int:
    worker = Worker(deps=deps, concurrency=args.concurrency)
    if args.once:
        outcomes = worker.run_once()
        failed = [job_id for job_id, status in outcomes.items() if status.value == "failed"]
        print(f"Processed {len(outcomes)} job run(s), {len(failed)} failed")
        return 1 if failed else 0
    try:
        worker.run_forever()
    except KeyboardInterrupt:
        worker.stop()
    return 0


def _cmd_submit(args: argparse.Namespace, deps: JobDependencies) -> int:
    seed = args.seed if args.seed is not None else Path(args.seed_file).read_text(encoding="utf-8")
    jobs = submit_stage(
        project_id=args.project,
        session_id=args.session,
        stage_slug=args.stage,
        model_ids=args.model,
        seed_prompt=seed,
        iteration_number=args.iteration,
        user_feedback=args.feedback,
        continue_until_complete=not args.no_continue,
        max_retries=args.max_retries,
        deps=deps,
    )
    for job in jobs:
        print(job.id)
    return 0


def _cmd_status(args: argparse.Namespace, deps: JobDependencies) -> int:
    job = job_manager.get_job(args.job_id)
    if job is None:
        print(f"Job not found: {args.job_id}", file=sys.stderr)
        return 1
    data = job.model_dump(mode="json", exclude={"payload"})
    data["payload"] = job.payload.to_payload()
    data["children"] = [
        {"id": child.id, "status": child.status.value}
        for child in job_manager.get_child_jobs(job.id)
    ]
    print(json.dumps(data, indent=2))
    return 0


def _cmd_list_models(args: argparse.Namespace, deps: JobDependencies) -> int:
    configs = deps.models.list_all(args.provider)
    if not configs:
        print(f"No catalog models for provider '{args.provider}'", file=sys.stderr)
        return 1
    if not args.remote:
        for config in configs:
            print(f"{config.api_identifier}\t{config.name}")
        return 0

    adapter = get_ai_provider_adapter(
        args.provider,
        resolve_api_key(args.provider),
        logging.getLogger(f"dialectic_worker.llm.{args.provider}"),
        configs[0],
    )
    for info in adapter.list_models():
        print(f"{info.api_identifier}\t{info.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dialectic_worker", description="Dialectic job pipeline worker")
    parser.add_argument("--storage-root", help="Storage root directory (default: DIALECTIC_STORAGE_ROOT)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the worker loop")
    run.add_argument("--once", action="store_true", help="Drain the current queue and exit")
    run.add_argument("--concurrency", type=int, default=None)
    run.set_defaults(handler=_cmd_run)

    submit = sub.add_parser("submit", help="Create plan jobs for a stage")
    submit.add_argument("--project", required=True)
    submit.add_argument("--session", required=True)
    submit.add_argument("--stage", required=True, help="Stage slug (thesis, antithesis, ...)")
    submit.add_argument("--model", action="append", required=True, help="Model api_identifier (repeatable)")
    seed = submit.add_mutually_exclusive_group(required=True)
    seed.add_argument("--seed", help="Seed prompt text")
    seed.add_argument("--seed-file", help="File holding the seed prompt")
    submit.add_argument("--iteration", type=int, default=1)
    submit.add_argument("--feedback", default=None, help="User feedback for this stage")
    submit.add_argument("--max-retries", type=int, default=3)
    submit.add_argument("--no-continue", action="store_true", help="Do not chain continuation jobs")
    submit.set_defaults(handler=_cmd_submit)

    status = sub.add_parser("status", help="Show a job")
    status.add_argument("job_id")
    status.set_defaults(handler=_cmd_status)

    models = sub.add_parser("list-models", help="List models for a provider")
    models.add_argument("provider", help="openai, anthropic, google or dummy")
    models.add_argument("--remote", action="store_true", help="Ask the provider API instead of the catalog")
    models.set_defaults(handler=_cmd_list_models)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    deps = JobDependencies.default(args.storage_root)
    try:
        return args.handler(args, deps)
    except DialecticError as e:
        logger.error(f"{e.kind}: {e.message}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
