"""Code-hosting platforms: change-request URL patterns and creation tools."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from work_engine.core.errors import PublishError
from work_engine.integrations.shell import run_command

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostingPlatform:
    name: str
    url_pattern: re.Pattern
    create_command: tuple[str, ...]

    def extract_url(self, text: str) -> str | None:
        """Return the first change-request URL found in ``text``."""
        match = self.url_pattern.search(text or "")
        return match.group(0) if match else None

    def build_create_args(self, title: str, body: str, branch: str) -> list[str]:
        if self.name == "gitlab":
            return list(self.create_command) + [
                "--title", title, "--description", body,
                "--source-branch", branch, "--yes",
            ]
        return list(self.create_command) + ["--title", title, "--body", body, "--head", branch]


GITHUB = HostingPlatform(
    name="github",
    url_pattern=re.compile(r"https://github\.com/[^\s]+/pull/\d+"),
    create_command=("gh", "pr", "create"),
)

GITLAB = HostingPlatform(
    name="gitlab",
    url_pattern=re.compile(r"https://[\w.-]*gitlab[\w.-]*/[^\s]+/-/merge_requests/\d+"),
    create_command=("glab", "mr", "create"),
)

PLATFORMS = {p.name: p for p in (GITHUB, GITLAB)}


def get_platform(name: str) -> HostingPlatform:
    try:
        return PLATFORMS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown hosting platform '{name}' (expected one of: {', '.join(sorted(PLATFORMS))})"
        ) from None


def create_change_request(
    platform: HostingPlatform,
    cwd: str | Path,
    title: str,
    body: str,
    branch: str,
) -> str:
    """Open a pull/merge request for ``branch`` and return its URL.

    Raises PublishError when the tool fails or prints no recognizable URL.
    """
    args = platform.build_create_args(title, body, branch)
    result = run_command(args, cwd=cwd)
    if not result.ok:
        raise PublishError(f"{' '.join(platform.create_command)} failed: {result.stderr.strip()}")
    url = platform.extract_url(result.stdout)
    if not url:
        raise PublishError(
            f"{' '.join(platform.create_command)} did not print a {platform.name} URL"
        )
    return url
