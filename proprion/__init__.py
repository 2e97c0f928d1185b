"""Scoped storage credentials for third-party apps.

Each app gets its own IAM identity, restricted to ``apps/<app-name>/`` inside the
user's bucket, and a single access key minted for that identity.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
