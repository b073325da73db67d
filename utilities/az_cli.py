from __future__ import annotations

import json
import random
import re
import subprocess
import time
from typing import Any

from simple_logger.logger import get_logger

from exceptions.exceptions import AzureCLIError

LOGGER = get_logger(__name__)

AZ_OUTPUT_ARGS = ["--output", "json", "--only-show-errors"]
TRANSIENT_ERRORS = re.compile(
    r"throttl|too many requests|rate limit|timed? ?out|temporarily unavailable|server busy|retry later"
    r"|internal server error|gateway timeout|connection (reset|aborted)",
    re.IGNORECASE,
)


def is_transient(stderr: str) -> bool:
    return bool(TRANSIENT_ERRORS.search(stderr or ""))


def backoff_sleep(attempt: int) -> None:
    time.sleep(min(15.0, 2**attempt) * random.uniform(0.7, 1.3))


def _az(args: list[str], timeout: int) -> Any:
    command = " ".join(args)
    LOGGER.debug(f"Running: az {command}")
    try:
        proc = subprocess.run(["az", *args, *AZ_OUTPUT_ARGS], capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as exp:
        raise AzureCLIError(reason="Azure CLI 'az' not found in PATH", command=command) from exp
    except subprocess.TimeoutExpired as exp:
        raise AzureCLIError(reason=f"timed out after {timeout}s", command=command, transient=True) from exp

    if proc.returncode:
        stderr = (proc.stderr or proc.stdout or "").strip()
        raise AzureCLIError(
            reason=stderr, command=command, returncode=proc.returncode, transient=is_transient(stderr=stderr)
        )

    output = (proc.stdout or "").strip()
    if not output:
        return None

    try:
        return json.loads(output)
    except json.JSONDecodeError as exp:
        raise AzureCLIError(reason=f"failed to parse JSON output: {exp}", command=command) from exp


def run_az_json(args: list[str], timeout: int = 300, retries: int = 3) -> Any:
    """
    Run an az sub command with JSON output and return the parsed result.

    Only failures flagged transient (throttling, gateway errors, timeouts) are retried.
    Commands that change state are called with retries=1 so they run at most once.

    Args:
        args (list[str]): az sub command and its arguments, e.g. ["vm", "show", "--name", "vm1"].
        timeout (int): Seconds to wait for a single az invocation.
        retries (int): Maximum number of attempts.

    Returns:
        Any: Parsed JSON output, None when az printed nothing.

    Raises:
        AzureCLIError: When az is missing, fails or prints invalid JSON.
    """
    attempts = max(1, retries)
    for attempt in range(1, attempts + 1):
        try:
            return _az(args=args, timeout=timeout)
        except AzureCLIError as exp:
            if not exp.transient or attempt == attempts:
                raise

            LOGGER.warning(f"Transient az failure, attempt {attempt}/{attempts}: {exp.reason}")
            backoff_sleep(attempt=attempt)
