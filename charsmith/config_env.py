"""Helpers for loading project environment configuration."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

from dotenv import find_dotenv, load_dotenv

LOCAL_ENV_FILE = ".env.local"
TEST_ENV_FILE = ".env.test"


def env_files() -> List[Path]:
    """Dotenv files :func:`load_env` reads, in load order.

    ``.env`` is searched upwards from the working directory; the local and
    test overlays only count in the working directory itself.
    """
    cwd = Path.cwd()
    files: List[Path] = []

    base = find_dotenv(".env", usecwd=True)
    if base:
        files.append(Path(base))

    names = [LOCAL_ENV_FILE]
    if os.getenv("PYTEST_CURRENT_TEST"):
        names.append(TEST_ENV_FILE)
    files.extend(cwd / name for name in names if (cwd / name).exists())
    return files


def load_env() -> List[Path]:
    """Load environment variables from .env files without overriding process env.

    Earlier files win over later ones.  Returns the files that were read.
    """
    files = env_files()
    for path in files:
        load_dotenv(path, override=False)
    return files
