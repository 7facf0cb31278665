import argparse
import logging

from paybatch.config import get_settings
from paybatch.database import build_session_factory
from paybatch.job import PaymentJob
from paybatch.scheduler import start_scheduler
from paybatch.schemas import JobStatus


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load a delimited payment file into the payments store")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="run the payment job once")
    run_parser.add_argument("--file", dest="file_path", required=False, help="Input file (defaults to INPUT_FILE)")
    run_parser.add_argument("--grid-size", type=int, required=False, help="Number of partitions run in parallel")
    run_parser.add_argument("--chunk-size", type=int, required=False, help="Records committed per batch")
    run_parser.add_argument(
        "--trigger-source",
        default="manual",
        choices=["manual", "scheduled"],
        help="Metadata label for how this run was triggered",
    )

    schedule_parser = subparsers.add_parser("schedule", help="start daily scheduler")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    job = PaymentJob(settings, session_factory)
    result = job.run(
        args.file_path,
        grid_size=args.grid_size,
        chunk_size=args.chunk_size,
        trigger_source=args.trigger_source,
    )

    print(
        "job_run_id={job_run_id} status={status} partitions={partitions} read={read} write={write} skip={skip} file={file}".format(
            job_run_id=result.job_run_id,
            status=result.status,
            partitions=len(result.partitions),
            read=result.read_count,
            write=result.write_count,
            skip=result.skip_count,
            file=result.file_path,
        )
    )
    for failed in result.failed_partitions:
        print(
            "failed partition={name} range=[{start}, {end}) read={read} write={write} error={error}".format(
                name=failed.partition.name,
                start=failed.partition.start_line,
                end=failed.partition.end_line,
                read=failed.read_count,
                write=failed.write_count,
                error=failed.error,
            )
        )
    if result.status == JobStatus.FAILURE:
        if result.error and not result.partitions:
            print(f"error={result.error}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
