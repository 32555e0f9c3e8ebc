"""Name validation and the organization/cluster name codec."""
import re
from typing import Tuple

MAX_NAME_LENGTH = 63

_ALLOWED = re.compile(r"^[a-z0-9-]+$")


def is_valid(name: str) -> Tuple[str, bool]:
    """Check a user supplied name against the DNS label rules.

    Returns ``(detail, ok)``; ``detail`` is empty when the name is valid.
    """
    if not name:
        return "name must not be empty", False

    if len(name) > MAX_NAME_LENGTH:
        return f"name must not contain more than {MAX_NAME_LENGTH} characters", False

    if name.startswith("-"):
        return "name must not begin with a dash character", False

    if name.endswith("-"):
        return "name must not end with a dash character", False

    if not _ALLOWED.match(name):
        return "name must contain only lowercase alphanumeric characters and the '-' character", False

    return "", True


def encode(organization: str, name: str) -> str:
    """Flatten an organization and cluster name into one upstream name."""
    return f"{organization}-{name}"


def decode(flat: str) -> Tuple[str, str]:
    """Split an upstream name on its first dash.

    Lossy when the organization name itself contains a dash; callers that
    have upstream labels available should prefer them.
    """
    organization, _, name = flat.partition("-")
    return organization, name
