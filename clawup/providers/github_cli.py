"""Git working tree and GitHub pull request operations via the git and gh CLIs."""

import json
import re
import subprocess
from datetime import datetime
from pathlib import Path

import aiofiles
import structlog

from clawup.config.settings import GitConfig
from clawup.exceptions import GitOperationError
from clawup.models.domain import (
    Mergeability,
    PRState,
    PullRequestOptions,
    ReviewComment,
    ReviewDecision,
)
from clawup.providers.base import VCSProvider
from clawup.utils.async_subprocess import run_command
from clawup.utils.retry import async_retry

log = structlog.get_logger(__name__)

REMOTE_PATTERN = re.compile(r"github\.com[:/]([^/]+/[^/.]+?)(?:\.git)?/?$")
PR_URL_PARTS = re.compile(r"github\.com/([^/]+/[^/]+)/pull/(\d+)")
CONFLICT_MARKER = re.compile(r"^(<{7}|>{7})(\s|$)", re.MULTILINE)


class GitHubCLIProvider(VCSProvider):
    """VCS provider backed by ``git`` and ``gh`` subprocesses.

    Every command runs in ``project_root`` with arguments passed as a list,
    so branch names and task-derived strings never reach a shell.
    """

    def __init__(
        self,
        config: GitConfig,
        project_root: Path | str,
        local_paths: list[str] | None = None,
    ):
        """Initialize the provider.

        Args:
            config: Git section of the settings
            project_root: Working tree the commands run in
            local_paths: Engine-owned files (lock, follow-up file) that are
                never staged, counted as changes, or cleaned
        """
        self.config = config
        self.cwd = Path(project_root)
        self.base = config.base_branch
        self.remote = config.remote
        self.local_paths = list(local_paths or [])

    def _pathspec(self) -> list[str]:
        if not self.local_paths:
            return []
        return ["--", ".", *(f":(exclude){path}" for path in self.local_paths)]

    def branch_name(self, task_id: str, slug: str) -> str:
        return f"{self.config.branch_prefix}/CU-{task_id}-{slug or 'task'}"

    async def _run(self, tool: str, *args: str, check: bool = True) -> tuple[str, str, int]:
        command = " ".join((tool, *args))
        log.debug("vcs_command", command=command)
        try:
            return await run_command(
                tool, *args, cwd=self.cwd, check=check, timeout=self.config.command_timeout
            )
        except subprocess.CalledProcessError as e:
            raise GitOperationError(
                f"{tool} {args[0]} failed",
                command=command,
                stderr=(e.stderr or e.stdout or "").strip(),
            ) from e
        except TimeoutError as e:
            raise GitOperationError(
                f"{tool} {args[0]} timed out after {self.config.command_timeout:g}s",
                command=command,
            ) from e
        except FileNotFoundError as e:
            raise GitOperationError(f"{tool} executable not found", command=command) from e

    async def _git(self, *args: str) -> str:
        stdout, _, _ = await self._run("git", *args)
        return stdout.strip()

    async def _gh(self, *args: str) -> str:
        stdout, _, _ = await self._run("gh", *args)
        return stdout.strip()

    async def _git_succeeds(self, *args: str) -> bool:
        _, _, code = await self._run("git", *args, check=False)
        return code == 0

    async def detect_repo(self) -> str:
        url = await self._git("remote", "get-url", self.remote)
        match = REMOTE_PATTERN.search(url)
        if not match:
            raise GitOperationError(f"Could not detect GitHub repository from remote: {url}")
        return match.group(1)

    async def sync_base(self) -> None:
        log.info("sync_base", base=self.base)
        await self._git("fetch", self.remote, self.base)
        await self._git("checkout", self.base)
        await self._git("reset", "--hard", f"{self.remote}/{self.base}")

    async def create_branch(self, task_id: str, slug: str) -> str:
        await self.sync_base()

        existing = await self.find_branch_for_task(task_id)
        if existing:
            log.info("branch_reused", task_id=task_id, branch=existing)
            await self.checkout(existing)
            return existing

        branch = self.branch_name(task_id, slug)
        log.info("branch_create", task_id=task_id, branch=branch)
        await self._git("checkout", "-b", branch)
        return branch

    async def find_branch_for_task(self, task_id: str) -> str | None:
        pattern = f"{self.config.branch_prefix}/CU-{task_id}-*"

        local = await self._git("branch", "--list", pattern)
        if local:
            return local.splitlines()[0].strip().lstrip("*+").strip()

        remote = await self._git("branch", "-r", "--list", f"{self.remote}/{pattern}")
        if remote:
            return remote.splitlines()[0].strip().removeprefix(f"{self.remote}/")

        return None

    async def checkout(self, branch: str) -> None:
        try:
            await self._git("checkout", branch)
        except GitOperationError:
            await self._git("checkout", "-b", branch, f"{self.remote}/{branch}")

    async def merge_base_into_current(self) -> bool:
        await self._git("fetch", self.remote, self.base)
        stdout, stderr, code = await self._run(
            "git", "merge", f"{self.remote}/{self.base}", "--no-edit", check=False
        )
        if code == 0:
            log.info("merge_clean", base=self.base)
            return True

        output = stdout + stderr
        if "CONFLICT" in output or "Automatic merge failed" in output:
            log.warning("merge_conflict", base=self.base)
            return False

        raise GitOperationError("git merge failed", command="git merge", stderr=output)

    async def conflicted_files(self) -> list[str]:
        output = await self._git("diff", "--name-only", "--diff-filter=U")
        return [line for line in output.splitlines() if line]

    async def files_with_conflict_markers(self, paths: list[str]) -> list[str]:
        remaining = []
        for path in paths:
            file_path = self.cwd / path
            if not file_path.is_file():
                continue
            async with aiofiles.open(file_path, encoding="utf-8", errors="replace") as f:
                content = await f.read()
            if CONFLICT_MARKER.search(content):
                remaining.append(path)
        return remaining

    async def abort_merge(self) -> None:
        log.info("merge_abort")
        await self._git("merge", "--abort")

    async def has_uncommitted_changes(self) -> bool:
        return bool(await self._git("status", "--porcelain", *self._pathspec()))

    async def is_working_tree_clean(self) -> bool:
        return not await self._git("status", "--porcelain", "-uno")

    async def commit(self, message: str, allow_empty: bool = False) -> str:
        await self._git("add", "-A", *self._pathspec())
        args = ["commit", "-m", message]
        if allow_empty:
            args.insert(1, "--allow-empty")
        await self._git(*args)
        short_hash = await self._git("rev-parse", "--short", "HEAD")
        log.info("commit_created", hash=short_hash, allow_empty=allow_empty)
        return short_hash

    # 2s, 4s, 8s, 16s between attempts
    @async_retry(max_attempts=5, backoff_factor=2.0, exceptions=(GitOperationError,))
    async def push(self, branch: str) -> None:
        log.info("push", branch=branch)
        await self._git("push", "-u", self.remote, branch)

    async def head_hash(self) -> str:
        return await self._git("rev-parse", "HEAD")

    async def changed_files(self) -> list[str]:
        output = await self._git("diff", "--name-only", f"{self.base}...HEAD")
        return [line for line in output.splitlines() if line]

    async def commits_ahead_of_base(self) -> int:
        output = await self._git("log", f"{self.base}..HEAD", "--oneline")
        return len([line for line in output.splitlines() if line])

    async def branch_is_pushed(self, branch: str) -> bool:
        return await self._git_succeeds("rev-parse", "--verify", f"{self.remote}/{branch}")

    async def create_pr(self, opts: PullRequestOptions) -> str:
        args = [
            "pr",
            "create",
            "--title",
            opts.title,
            "--body",
            opts.body,
            "--base",
            opts.base_branch or self.base,
            "--head",
            opts.branch_name,
        ]
        if opts.draft:
            args.append("--draft")
        output = await self._gh(*args)
        url = output.splitlines()[-1].strip() if output else ""
        log.info("pr_created", pr_url=url, draft=opts.draft)
        return url

    async def find_existing_pr(self, branch: str) -> str | None:
        stdout, _, code = await self._run("gh", "pr", "view", branch, "--json", "url", "--jq", ".url", check=False)
        url = stdout.strip()
        if code != 0 or not url:
            return None
        return url

    async def pr_state(self, url: str) -> PRState:
        data = json.loads(await self._gh("pr", "view", url, "--json", "state,isDraft"))
        state = str(data.get("state", "")).upper()
        if state == "MERGED":
            return PRState.MERGED
        if state == "CLOSED":
            return PRState.CLOSED
        if data.get("isDraft"):
            return PRState.DRAFT
        return PRState.OPEN

    async def pr_mergeability(self, url: str) -> Mergeability:
        stdout, _, code = await self._run(
            "gh", "pr", "view", url, "--json", "mergeable", "--jq", ".mergeable", check=False
        )
        if code != 0:
            return Mergeability.UNKNOWN
        try:
            return Mergeability(stdout.strip().upper())
        except ValueError:
            return Mergeability.UNKNOWN

    async def mark_ready(self, url: str) -> None:
        log.info("pr_mark_ready", pr_url=url)
        await self._gh("pr", "ready", url)

    async def update_pr(self, url: str, body: str) -> None:
        log.info("pr_update", pr_url=url)
        await self._gh("pr", "edit", url, "--body", body)

    async def merge_pr(self, url: str) -> None:
        log.info("pr_merge", pr_url=url, strategy=self.config.merge_strategy)
        await self._gh("pr", "merge", url, f"--{self.config.merge_strategy}", "--delete-branch", "--admin")

    async def close_pr(self, url: str) -> None:
        log.info("pr_close", pr_url=url)
        await self._gh("pr", "close", url)

    async def review_decision(self, url: str) -> ReviewDecision:
        stdout, _, code = await self._run(
            "gh", "pr", "view", url, "--json", "reviewDecision", "--jq", ".reviewDecision", check=False
        )
        value = stdout.strip().upper()
        if code != 0 or not value:
            return ReviewDecision.NONE
        try:
            return ReviewDecision(value)
        except ValueError:
            return ReviewDecision.NONE

    async def review_comments(self, url: str) -> list[ReviewComment]:
        stdout, stderr, code = await self._run("gh", "pr", "view", url, "--json", "reviews", check=False)
        if code != 0:
            log.warning("review_comments_unavailable", pr_url=url, stderr=stderr.strip())
            return []
        reviews = json.loads(stdout or "{}").get("reviews") or []
        return [
            ReviewComment(
                author=(r.get("author") or {}).get("login", "unknown"),
                body=r["body"],
                created_at=_parse_timestamp(r.get("submittedAt")),
            )
            for r in reviews
            if (r.get("body") or "").strip()
        ]

    async def inline_comments(self, url: str) -> list[ReviewComment]:
        match = PR_URL_PARTS.search(url)
        if not match:
            return []
        repo, number = match.groups()
        stdout, stderr, code = await self._run("gh", "api", f"repos/{repo}/pulls/{number}/comments", check=False)
        if code != 0:
            log.warning("inline_comments_unavailable", pr_url=url, stderr=stderr.strip())
            return []
        return [
            ReviewComment(
                author=(c.get("user") or {}).get("login", "unknown"),
                body=c.get("body") or "",
                created_at=_parse_timestamp(c.get("created_at")),
                path=c.get("path"),
                line=c.get("line"),
            )
            for c in json.loads(stdout or "[]")
        ]

    async def delete_local_branch(self, branch: str) -> None:
        if await self._git_succeeds("branch", "-D", branch):
            log.info("branch_deleted", branch=branch)
        else:
            log.debug("branch_delete_skipped", branch=branch)

    async def delete_remote_branch(self, branch: str) -> None:
        if await self._git_succeeds("push", self.remote, "--delete", branch):
            log.info("remote_branch_deleted", branch=branch)
        else:
            log.debug("remote_branch_delete_skipped", branch=branch)

    async def return_to_base(self) -> None:
        if await self._git_succeeds("rev-parse", "--verify", "MERGE_HEAD"):
            log.warning("merge_in_progress_aborted")
            if not await self._git_succeeds("merge", "--abort"):
                log.debug("merge_abort_failed")

        if await self.has_uncommitted_changes():
            log.warning("uncommitted_changes_discarded")
            await self._git("reset", "--hard", "HEAD")
            excludes = [arg for path in self.local_paths for arg in ("-e", path)]
            await self._git("clean", "-fd", *excludes)

        await self._git("checkout", self.base)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
