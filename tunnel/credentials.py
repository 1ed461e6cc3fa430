"""Load the proxy credential from an auth file holding "username:secret"."""

import logging

from utils.errors import CredentialError
from utils.models import Credential

logger = logging.getLogger(__name__)


def load_credential(path):
    """
    Read a credential from the first line of an auth file.

    Only the trailing line ending is stripped; the secret may contain
    spaces and colons.

    Args:
        path: Path to the auth file

    Returns:
        Credential: Username and secret from the file

    Raises:
        CredentialError: If the file cannot be read or holds no "username:secret"
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            first_line = f.readline()
    except (OSError, UnicodeDecodeError) as e:
        raise CredentialError(f"Cannot read auth file {path}: {e}", path=path) from e

    first_line = first_line.rstrip("\r\n")
    if not first_line:
        raise CredentialError(f"Auth file {path} is empty", path=path)

    username, sep, secret = first_line.partition(":")
    if not sep:
        raise CredentialError(f"Auth file {path} must contain username:secret", path=path)

    logger.debug(f"Loaded proxy credential for user {username!r} from {path}")
    return Credential(username=username, secret=secret)
