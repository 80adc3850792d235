import base64
import contextlib
import os
import shutil
import sys
import tempfile
import typing
from typing import Iterator, Optional
from git.repo import Repo
from logger import logger


class SetupError(Exception):
    """Base class for every failure an install or configuration step can raise."""


class PrerequisiteError(SetupError):
    pass


# See:
#  - https://discuss.python.org/t/adding-atomicwrite-in-stdlib/11899
#  - https://code.activestate.com/recipes/579097-safely-and-atomically-write-to-a-file/
@contextlib.contextmanager
def atomic_write(filename: str, *, mode: Optional[int] = None) -> Iterator[typing.IO[str]]:
    path = os.path.dirname(os.path.abspath(filename))
    os.makedirs(path, exist_ok=True)

    # Keep the permissions of the file we replace (~/.bashrc, state files)
    if mode is None:
        try:
            mode = os.stat(filename).st_mode & 0o7777
        except FileNotFoundError:
            mode = 0o644

    tmp: Optional[str]
    fd, tmp = tempfile.mkstemp(prefix=os.path.basename(filename) + ".", dir=path, text=True)

    try:
        with os.fdopen(fd, "w") as f:
            yield f
            f.flush()
            os.fchmod(f.fileno(), mode)

        os.replace(tmp, filename)
        tmp = None
    finally:
        if tmp is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp)


def git_repo_setup(repo_dir: str, *, repo_wipe: bool = True, url: str, branch: Optional[str] = None) -> bool:
    """Clone url into repo_dir. Returns False when an existing checkout was kept."""
    exists = os.path.exists(repo_dir)
    if exists and not repo_wipe:
        logger.info(f"Repository already present at {repo_dir}")
        return False
    if exists:
        shutil.rmtree(repo_dir)

    logger.info(f"Cloning repo {url} to {repo_dir}")
    Repo.clone_from(url, repo_dir, branch=branch)
    return True


def b64decode_str(value: str) -> str:
    return base64.b64decode(value).decode("utf-8")


def b64encode_str(value: str | bytes) -> str:
    if isinstance(value, str):
        value = value.encode("utf-8")
    return base64.b64encode(value).decode("ascii")


def confirm(question: str, *, assume_yes: bool = False) -> bool:
    if assume_yes:
        return True
    if not sys.stdin.isatty():
        logger.warning(f"{question} - no terminal to confirm on, assuming no")
        return False
    answer = input(f"{question} (y/N): ")
    return answer.strip().lower() in ("y", "yes")


def remove_empty_strings(comma_string: str) -> list[str]:
    return list(filter(None, (s.strip() for s in comma_string.split(","))))
