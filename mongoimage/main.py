import argparse
import logging
import signal
import sys
from typing import List, Optional

from mongoimage.config import settings
from mongoimage.models.check import RunReport
from mongoimage.services.checks import CHECKS
from mongoimage.services.docker_manager import get_docker_manager
from mongoimage.services.suite import run_suite

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongoimage-check",
        description="Run black-box checks against a prebuilt MongoDB container image",
    )
    parser.add_argument(
        "--image",
        default=settings.image_name,
        help="image to test (default: $IMAGE_NAME)",
    )
    parser.add_argument(
        "--only",
        type=lambda value: [name.strip() for name in value.split(",") if name.strip()],
        default=None,
        help="comma separated subset of checks to run",
    )
    parser.add_argument(
        "--keep-going",
        action="store_true",
        help="continue after a failed check",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="list the available checks and exit",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
    )
    return parser


def _raise_on_sigterm(signum, frame):
    # Turn SIGTERM into SystemExit so cleanup in finally blocks runs
    raise SystemExit(128 + signum)


def print_report(report: RunReport) -> None:
    print(f"\nResults for {report.image}:")
    for result in report.results:
        status = "PASS" if result.passed else "FAIL"
        print(f"  [{status}] {result.name} ({result.duration_seconds:.1f}s) {result.message}")
    print("\nAll checks passed" if report.passed else f"\n{len(report.failed)} check(s) failed")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.getLevelName(args.log_level)
    if not isinstance(level, int):
        print(f"mongoimage-check: unknown log level '{args.log_level}'", file=sys.stderr)
        return EXIT_USAGE

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.list:
        for name, check in CHECKS:
            summary = (check.__doc__ or "").strip().splitlines()
            print(f"{name:24} {summary[0] if summary else ''}")
        return EXIT_OK

    if not args.image:
        logger.error("No image given: pass --image or set IMAGE_NAME")
        return EXIT_USAGE

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    signal.signal(signal.SIGTERM, _raise_on_sigterm)

    try:
        docker_manager = get_docker_manager()
    except Exception as e:
        logger.error(f"Docker is not reachable: {e}")
        return EXIT_USAGE

    try:
        report = run_suite(docker_manager, args.image, names=args.only, keep_going=args.keep_going)
    except ValueError as e:
        logger.error(str(e))
        return EXIT_USAGE

    print_report(report)
    return EXIT_OK if report.passed else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
