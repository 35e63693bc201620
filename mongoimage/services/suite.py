from typing import List, Optional
import logging
import time

from mongoimage.models.check import CheckResult, RunReport
from mongoimage.services.checks import CheckContext, select_checks
from mongoimage.services.docker_manager import DockerManager

logger = logging.getLogger(__name__)


def run_suite(
    docker_manager: DockerManager,
    image: str,
    names: Optional[List[str]] = None,
    keep_going: bool = False
) -> RunReport:
    """
    Run the selected checks in order against `image`

    Args:
        docker_manager: Runtime wrapper used to launch containers
        image: Image reference under test
        names: Subset of checks to run (default: all)
        keep_going: Continue after a failed check instead of stopping

    Returns:
        RunReport: One result per check that ran
    """
    selected = select_checks(names)
    report = RunReport(image=image)

    try:
        for name, check in selected:
            logger.info(f"Running check '{name}' against {image}")
            ctx = CheckContext(docker_manager, image)
            start = time.monotonic()
            try:
                message = check(ctx)
                result = CheckResult(name=name, passed=True, message=message or "")
                logger.info(f"Check '{name}' passed: {result.message}")
            except Exception as e:
                result = CheckResult(name=name, passed=False, message=f"{type(e).__name__}: {e}")
                logger.error(f"Check '{name}' failed: {result.message}")
            finally:
                ctx.release()
            result.duration_seconds = round(time.monotonic() - start, 3)
            report.results.append(result)

            if not result.passed and not keep_going:
                logger.info("Stopping at first failure")
                break
    finally:
        docker_manager.cleanup_all()

    return report
