import os
import random
import re
import ssl
import tarfile
import urllib.parse
import urllib.request
from pathlib import Path
from typing import TypeVar

from humanfriendly import InvalidTimespan, parse_timespan
from simple_logger.logger import get_logger

from exceptions.exceptions import BadResponseError, OvfImportError

LOGGER = get_logger(__name__)

IPWAIT_TIMEOUT_ENV = "IPWAIT_TIMEOUT"
DEFAULT_IPWAIT_TIMEOUT = 60 * 60
DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)([a-zA-Z]*)")
DURATION_RE = re.compile(r"(?:\d+(?:\.\d+)?[a-zA-Z]*)+")

T = TypeVar("T")


def choose_random(items: list[T]) -> T | None:
    """Uniform pick used to spread placements; None when there is nothing to choose from."""
    if not items:
        return None

    return random.choice(items)


def parse_duration(value: str) -> float:
    """
    Seconds in a Go style duration such as "90s", "5m" or "1h30m".

    A bare number is taken as seconds.

    Raises:
        InvalidTimespan: When the value is not a sequence of number+unit parts.
    """
    _value = value.replace(" ", "")
    if not DURATION_RE.fullmatch(_value):
        raise InvalidTimespan(f"Invalid duration: '{value}'")

    return sum(parse_timespan(f"{number}{unit}") for number, unit in DURATION_PART_RE.findall(_value))


def get_ip_wait_timeout() -> int:
    value = os.environ.get(IPWAIT_TIMEOUT_ENV)
    if not value:
        return DEFAULT_IPWAIT_TIMEOUT

    try:
        timeout = int(parse_duration(value))
    except InvalidTimespan:
        LOGGER.warning(f"Invalid {IPWAIT_TIMEOUT_ENV} value '{value}', using {DEFAULT_IPWAIT_TIMEOUT}s")
        return DEFAULT_IPWAIT_TIMEOUT

    if timeout <= 0:
        LOGGER.warning(f"Non positive {IPWAIT_TIMEOUT_ENV} value '{value}', using {DEFAULT_IPWAIT_TIMEOUT}s")
        return DEFAULT_IPWAIT_TIMEOUT

    return timeout


def ssl_context(insecure: bool = True) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    return context


def fetch_archive(url: str, download_dir: Path, insecure: bool = True) -> Path:
    """
    Make an OVA archive available locally.

    Remote archives (http/https) are downloaded into download_dir, local paths are used in place.

    Raises:
        BadResponseError: If the server answers with anything other than 200.
    """
    if not url.startswith(("http://", "https://")):
        return Path(url)

    archive = download_dir / (Path(urllib.parse.urlparse(url).path).name or "template.ova")
    LOGGER.info(f"Downloading {url} to {archive}")
    with urllib.request.urlopen(url, context=ssl_context(insecure=insecure)) as response:
        if response.status != 200:
            raise BadResponseError(status=response.status, reason=f"can't download ova file from url: {url}")

        with archive.open("wb") as fd:
            while chunk := response.read(1024 * 1024):
                fd.write(chunk)

    return archive


def extract_ovf(archive: Path, destination: Path) -> Path:
    """Extract an OVA (tar) archive and return the path of its .ovf descriptor."""
    LOGGER.info(f"Extracting {archive} to {destination}")
    with tarfile.open(archive, "r:*") as tar:
        tar.extractall(path=destination, filter="data")
        ovf_members = [member.name for member in tar.getmembers() if member.name.endswith(".ovf")]

    if len(ovf_members) != 1:
        raise OvfImportError(f"expected a single ovf file in {archive.name}, found {len(ovf_members)}: {ovf_members}")

    return destination / ovf_members[0]
