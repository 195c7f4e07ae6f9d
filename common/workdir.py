"""
Scoped changes of the process working directory.

The working directory is shared by everything running in the process, so any
code that changes it must put it back before yielding control. This context
manager restores it unconditionally, also when the body raises.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


@contextmanager
def preserved_cwd() -> Iterator[Path]:
    """Remember the current directory and restore it on exit.

    Use around calls into collaborators that may change directory as a side
    effect (descriptor parsers, for instance).
    """
    original = Path.cwd()
    try:
        yield original
    finally:
        if Path.cwd() != original:
            logger.debug("Restoring working directory to %s", original)
            os.chdir(original)

