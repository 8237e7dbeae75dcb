"""
This module manages the symmetric key used to encrypt the document store at rest.

It uses the `cryptography` library (Fernet symmetric encryption). The key lives in a
separate key file (`secret.key` by default, see `config.KEY_FILE`) that is generated
on first use.

Security Note: The key file is critical. It must be kept secure and should not be
committed to version control.
"""
# mindcare/encryption.py

import logging
import os

from cryptography.fernet import Fernet

logger = logging.getLogger(__name__)


def write_key(path) -> bytes:
    """Generates a new Fernet key and saves it to `path`.

    Returns:
        bytes: The generated key.
    """
    key = Fernet.generate_key()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "wb") as key_file:
        key_file.write(key)
    return key


def load_key(path) -> bytes:
    """Loads the Fernet key from `path`.

    Raises:
        FileNotFoundError: If the key file does not exist.
    """
    with open(path, "rb") as key_file:
        return key_file.read().strip()


def load_or_create_key(path) -> bytes:
    """Loads the key at `path`, generating one if the file is missing."""
    try:
        return load_key(path)
    except FileNotFoundError:
        logger.warning("Encryption key %s not found. Generating a new one.", path)
        return write_key(path)


def build_encryptor(path) -> Fernet:
    """Returns a Fernet instance keyed from the key file at `path`."""
    return Fernet(load_or_create_key(path))
