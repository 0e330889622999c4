"""
Print bearer tokens for a demo owner and two demo signers.
Use when no external auth service is available so you can call the API by hand.

Run from project root:
  python scripts/create_test_tokens.py

Tokens are signed with JWT_SECRET_KEY from .env; the API must run with the same key.
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from signflow.services.auth import create_access_token

# Default identities (change if you want)
USERS = [
    ("owner@signflow.demo", "Demo Owner"),
    ("alice@signflow.demo", "Alice Demo"),
    ("bob@signflow.demo", "Bob Demo"),
]

# Long-lived for manual testing
EXPIRE_MINUTES = 60 * 24


def main():
    print("Bearer tokens (valid %d minutes):" % EXPIRE_MINUTES)
    for email, name in USERS:
        token = create_access_token(email, name=name, expires_minutes=EXPIRE_MINUTES)
        print(f"\n  {name} <{email}>\n  Authorization: Bearer {token}")
    print("\nCreate a document as the owner with the signers' emails, then sign as each signer.")


if __name__ == "__main__":
    main()
