"""Project context detection.

Works out which project a working directory belongs to, so conversations and
entities land under a stable project id. Priority for name and organization:
git remote, then the project manifest, then the directory layout.
"""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

ProjectType = Literal["git", "directory", "unknown"]

_SSH_REMOTE = re.compile(r"^git@([^:]+):([^/]+)/([^/]+?)(?:\.git)?$")
_HTTPS_REMOTE = re.compile(r"^https?://[^/]+/([^/]+)/([^/]+?)(?:\.git)?$")
_NESTED_REMOTE = re.compile(r"^https?://[^/]+/(.+?)/([^/]+?)(?:\.git)?$")
_SCOPED_NAME = re.compile(r"^(?:@([^/]+)/)?(.+)$")


@dataclass
class ProjectContext:
    project_id: str
    group_id: str
    project_path: str
    project_name: str
    project_type: ProjectType = "unknown"
    git_remote: str | None = None
    organization: str | None = None


@dataclass
class RemoteInfo:
    url: str
    organization: str | None = None
    name: str | None = None


def find_git_root(start: str | Path) -> Path | None:
    current = Path(start).resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def parse_git_remote(url: str) -> RemoteInfo:
    """Split `git@host:org/repo.git`, `https://host/org/repo(.git)` and nested group URLs."""
    url = url.strip()
    m = _SSH_REMOTE.match(url)
    if m:
        return RemoteInfo(url=url, organization=m.group(2), name=m.group(3))
    m = _HTTPS_REMOTE.match(url)
    if m:
        return RemoteInfo(url=url, organization=m.group(1), name=m.group(2))
    m = _NESTED_REMOTE.match(url)
    if m:
        # last group of gitlab-style subgroups acts as the organization
        return RemoteInfo(url=url, organization=m.group(1).split("/")[-1], name=m.group(2))
    return RemoteInfo(url=url)


def git_output(args: list[str], cwd: str | Path) -> str | None:
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git %s failed: %s", " ".join(args), e)
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout.strip()


def git_remote_info(git_root: Path) -> RemoteInfo | None:
    remote = git_output(["remote", "get-url", "origin"], git_root)
    return parse_git_remote(remote) if remote else None


def manifest_name(project_path: Path) -> tuple[str | None, str | None]:
    """(name, organization) from package.json / deno.json / pyproject.toml."""
    for fname in ("package.json", "deno.json", "deno.jsonc"):
        p = project_path / fname
        if not p.is_file():
            continue
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            continue
        name = data.get("name") if isinstance(data, dict) else None
        if isinstance(name, str) and name:
            m = _SCOPED_NAME.match(name)
            if m:
                return m.group(2), m.group(1)

    p = project_path / "pyproject.toml"
    if p.is_file():
        try:
            data = tomllib.loads(p.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            return None, None
        name = (data.get("project") or {}).get("name")
        if isinstance(name, str) and name:
            return name, None
    return None, None


def path_structure(project_path: Path) -> tuple[str, str | None]:
    """(name, organization) from `.../Projects/<org>/<repo>` or `.../github.com/<org>/<repo>`."""
    parts = project_path.parts
    lowered = [p.lower() for p in parts]
    for marker, exact in (("projects", False), ("github.com", True)):
        haystack = parts if exact else lowered
        if marker in haystack:
            i = haystack.index(marker)
            if len(parts) > i + 2:
                return parts[i + 2], parts[i + 1]
    return project_path.name, None


def project_slug(organization: str | None, name: str | None) -> str:
    parts = [p for p in (organization, name) if p] or ["default"]
    slug = re.sub(r"[^a-z0-9-]", "-", "-".join(parts).lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def detect_project(cwd: str | Path | None = None, group_id: str | None = None) -> ProjectContext:
    resolved = Path(cwd or os.getcwd()).resolve()
    git_root = find_git_root(resolved)
    root = git_root or resolved

    cfg_name, cfg_org = manifest_name(root)
    path_name, path_org = path_structure(root)

    remote = git_remote_info(git_root) if git_root else None
    if remote and (remote.name or remote.organization):
        name = remote.name or cfg_name or path_name
        org = remote.organization or cfg_org or path_org
    else:
        name = cfg_name or path_name
        org = cfg_org or path_org

    project_id = project_slug(org, name)
    group_id = group_id or os.getenv("GROUP_ID") or f"project-{project_id}"
    return ProjectContext(
        project_id=project_id,
        group_id=group_id,
        project_path=str(root),
        project_name=name,
        project_type="git" if git_root else "directory",
        git_remote=remote.url if remote else None,
        organization=org,
    )
