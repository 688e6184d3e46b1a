from __future__ import annotations

from pathlib import Path


class PathSafetyError(ValueError):
    pass


class PathTraversalError(PathSafetyError):
    pass


def validate_artifact_name(raw_name: str) -> Path:
    if not raw_name or not raw_name.strip():
        raise PathSafetyError("Artifact name cannot be blank")
    if "\x00" in raw_name:
        raise PathSafetyError("Artifact name contains a NUL byte")
    if raw_name.startswith("/"):
        raise PathTraversalError("Artifact name must be relative to the backups root")
    return Path(raw_name)


def is_under_root(root: Path, candidate: Path) -> bool:
    return candidate == root or root in candidate.parents


def resolve_under_root(root: Path, raw_name: str) -> Path:
    """Resolve ``raw_name`` against ``root`` and refuse anything that lands outside it.

    ``..`` segments and symlinks are resolved before the prefix check, and the
    root itself is never a valid target.
    """
    rel = validate_artifact_name(raw_name)
    resolved_root = root.resolve(strict=False)
    candidate = (resolved_root / rel).resolve(strict=False)

    if candidate != resolved_root and is_under_root(resolved_root, candidate):
        return candidate

    raise PathTraversalError(f"Path escapes backups root: {raw_name}")
