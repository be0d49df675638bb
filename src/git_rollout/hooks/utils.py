"""Environment helpers for hook and git subprocesses."""

from __future__ import annotations

import os
from typing import Mapping

# Interpreter and repository overrides leaked from the invoking shell; a hook
# or git command must act on the deployment root, not on whatever repository
# or virtualenv launched git-rollout.
_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_PREFIX",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy ``os.environ`` without the overrides above, then apply ``additional``."""

    env = {key: value for key, value in os.environ.items() if key not in _SANITIZED_VARS}
    if additional:
        env.update(additional)
    return env
