#!/usr/bin/env python3
"""Token encryption key setup script.

Generates the Fernet key used to encrypt stored OAuth tokens and sign
OAuth state values, and optionally stores it in the OS keychain.

Usage:
    python -m scripts.setup_token_key            # generate + offer keychain
    python -m scripts.setup_token_key --print    # print only, store nothing

Changing the key makes every stored token unreadable; affected users
must reconnect their banks.
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cryptography.fernet import Fernet

from services.credential_manager import get_credential, set_credential

KEY_NAME = "TOKEN_ENCRYPTION_KEY"


def generate_key() -> str:
    """Return a new url-safe base64 Fernet key."""
    return Fernet.generate_key().decode()


def _confirm(prompt: str, default: bool = True) -> bool:
    answer = input(prompt).strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def store_key(key: str, force: bool = False) -> bool:
    """Store ``key`` in the keychain.

    Refuses to overwrite an existing key unless ``force`` is set or the
    user confirms.

    Returns:
        True if the key was stored.
    """
    existing = get_credential(KEY_NAME)
    if existing and not force:
        print(f"A {KEY_NAME} is already stored in the keychain.")
        print("Replacing it makes every stored bank token unreadable.")
        if not _confirm("Replace it anyway? [y/N] ", default=False):
            print("  Kept the existing key.")
            return False
    if set_credential(KEY_NAME, key):
        print(f"  Stored {KEY_NAME} in keychain")
        return True
    print(f"  Failed to store {KEY_NAME} in keychain")
    return False


def main(argv: list[str] | None = None) -> None:
    """Generate a key and offer to store it."""
    parser = argparse.ArgumentParser(description="Generate the token encryption key.")
    parser.add_argument(
        "--print",
        dest="print_only",
        action="store_true",
        help="Print the key without touching the keychain",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing keychain key without asking",
    )
    args = parser.parse_args(argv)

    key = generate_key()
    print("Token Encryption Key Setup")
    print("=" * 50)
    print()

    if args.print_only:
        print("Add the following to your .env file:")
        print()
        print(f"{KEY_NAME}={key}")
        return

    if not args.force and not _confirm("Store a new key in the OS keychain? [Y/n] "):
        print("  Skipped keychain storage. Add this to your .env instead:")
        print(f"{KEY_NAME}={key}")
        return

    if not store_key(key, force=args.force):
        sys.exit(1)


if __name__ == "__main__":
    main()
