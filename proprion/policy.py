from __future__ import annotations

import re

from .errors import InvalidScope
from .models import (
    APPS_ROOT,
    PolicyCategory,
    PolicyDocument,
    PolicyGrant,
    ResourceKind,
    ScopePrefix,
)


# Provider role names are limited in length and charset; app names must fit in both.
APP_NAME_MAX_LENGTH = 54
_APP_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_SEPARATORS = ("/", "\\")

# Object-level grants, then the prefix-filtered bucket listing.
_GRANT_LAYOUT: tuple[tuple[PolicyCategory, ResourceKind], ...] = (
    (PolicyCategory.READ, ResourceKind.OBJECT),
    (PolicyCategory.WRITE, ResourceKind.OBJECT),
    (PolicyCategory.DELETE, ResourceKind.OBJECT),
    (PolicyCategory.LIST, ResourceKind.BUCKET),
)


def normalize_app_name(app_name: str) -> str:
    raw = str(app_name or "")
    name = raw.strip().strip("/\\").strip()
    if not name:
        raise InvalidScope(f"app name {raw!r} normalizes to an empty prefix")
    if any(sep in name for sep in _SEPARATORS):
        raise InvalidScope(f"app name {raw!r} must not contain path separators")
    if name in (".", "..") or ".." in name:
        raise InvalidScope(f"app name {raw!r} must not contain '.' or '..' segments")
    if len(name) > APP_NAME_MAX_LENGTH:
        raise InvalidScope(f"app name {raw!r} is longer than {APP_NAME_MAX_LENGTH} characters")
    if not _APP_NAME_RE.match(name):
        raise InvalidScope(
            f"app name {raw!r} may only contain letters, digits, '.', '_' and '-' "
            "and must start with a letter or digit"
        )
    return name


def scope_prefix(app_name: str) -> ScopePrefix:
    name = normalize_app_name(app_name)
    return ScopePrefix(app_name=name, value=f"{APPS_ROOT}{name}/")


def synthesize(bucket: str, scope: ScopePrefix) -> PolicyDocument:
    """Build the least-privilege policy for ``scope`` inside ``bucket``.

    Every grant carries the scope prefix; the trailing separator keeps
    ``apps/foo/`` from matching ``apps/foo2/``.
    """

    bucket_name = str(bucket or "").strip()
    if not bucket_name or any(sep in bucket_name for sep in _SEPARATORS):
        raise InvalidScope(f"invalid bucket name {bucket!r}")
    # Re-derive so a hand-built ScopePrefix cannot bypass normalization.
    checked = scope_prefix(scope.app_name)
    if checked != scope:
        raise InvalidScope(f"scope prefix {scope.value!r} does not match app {scope.app_name!r}")
    grants = tuple(
        PolicyGrant(category=category, resource=resource, bucket=bucket_name, prefix=checked.value)
        for category, resource in _GRANT_LAYOUT
    )
    return PolicyDocument(bucket=bucket_name, scope=checked, grants=grants)
