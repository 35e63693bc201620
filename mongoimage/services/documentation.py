"""
Required-content checks for the documentation bundle.

The repository ships a one-page manual (README.md) for the image, and the
image itself ships a help page. Both must mention the parts of the image
contract a user cannot guess.
"""
from pathlib import Path
from typing import Iterable, List
import logging
import re

from mongoimage.config import settings
from mongoimage.services.docker_manager import DockerManager

logger = logging.getLogger(__name__)

ENVIRONMENT_VARIABLES = [
    "MONGODB_USER",
    "MONGODB_PASSWORD",
    "MONGODB_DATABASE",
    "MONGODB_ADMIN_PASSWORD",
    "MONGODB_REPLICA_NAME",
    "MONGODB_KEYFILE_VALUE",
    "MONGODB_NOPREALLOC",
    "MONGODB_SMALLFILES",
    "MONGODB_QUIET",
]

README_MARKERS = ENVIRONMENT_VARIABLES + [
    "/var/lib/mongodb/data",
    "/etc/mongod.conf",
    "27017",
    "volume",
]

HELP_PAGE_MARKERS = ["MONGODB_ADMIN_PASSWORD", "volume", "27017"]

_ROFF_MACRO = re.compile(r"^\.(TH|SH|PP|TP|B|I|IP|RS|RE|nf|fi|\\\")(\s|$)", re.MULTILINE)


def missing_markers(text: str, markers: Iterable[str]) -> List[str]:
    """Return the markers that do not occur literally in `text`"""
    return [marker for marker in markers if marker not in text]


def is_roff(text: str) -> bool:
    """True when the text uses troff/groff man macros"""
    return bool(_ROFF_MACRO.search(text))


def check_readme(path: str = None) -> List[str]:
    """
    Check the repository manual for required markers

    Returns:
        List[str]: Problems found (empty when the manual is complete)
    """
    readme = Path(path or settings.readme_path)
    if not readme.is_file():
        return [f"{readme} does not exist (set README_PATH to the image manual)"]

    text = readme.read_text(encoding="utf-8")
    return [f"{readme} does not include '{marker}'" for marker in missing_markers(text, README_MARKERS)]


def check_help_page(text: str, file_name: str = None) -> List[str]:
    """Check the help page extracted from the image"""
    file_name = file_name or settings.help_file_path
    problems = [
        f"File {file_name} does not include '{marker}'"
        for marker in missing_markers(text, HELP_PAGE_MARKERS)
    ]
    if not is_roff(text):
        problems.append(f"{file_name} is not in troff or groff format")
    return problems


def read_help_page(docker_manager: DockerManager, image: str) -> str:
    """Extract the help page from a throwaway container of the image"""
    logger.info(f"Extracting {settings.help_file_path} from {image}")
    return docker_manager.run_once(
        ["/bin/bash", "-c", f"cat {settings.help_file_path}"],
        image=image
    )
