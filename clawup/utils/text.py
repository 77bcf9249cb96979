"""Text helpers for identifiers, branch slugs and untrusted task content."""

import re

TASK_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")
MAX_TASK_ID_LENGTH = 30
MAX_SLUG_LENGTH = 50

INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"ignore\s+(all\s+)?above\s+instructions", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?previous", re.IGNORECASE),
    re.compile(r"you\s+are\s+now\s+a", re.IGNORECASE),
    re.compile(r"new\s+system\s+prompt", re.IGNORECASE),
    re.compile(r"override\s+(the\s+)?system", re.IGNORECASE),
    re.compile(r"forget\s+(all\s+)?(your\s+)?instructions", re.IGNORECASE),
    re.compile(r"</task>", re.IGNORECASE),
    re.compile(r"IMPORTANT:\s*ignore", re.IGNORECASE),
    re.compile(r"CRITICAL:\s*override", re.IGNORECASE),
]

_CLOSING_TASK_TAG = re.compile(r"</task>", re.IGNORECASE)


def is_valid_task_id(task_id: str) -> bool:
    """Return True if ``task_id`` is safe to embed in branch names and commands."""
    return bool(task_id) and len(task_id) <= MAX_TASK_ID_LENGTH and TASK_ID_PATTERN.fullmatch(task_id) is not None


def slugify(text: str) -> str:
    """Create a lowercase, dash-separated slug for a branch name."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "... (truncated)"


def sanitize_untrusted(text: str) -> str:
    """Escape closing task tags so untrusted content cannot leave its block."""
    return _CLOSING_TASK_TAG.sub("&lt;/task&gt;", text)


def detect_injection_patterns(text: str) -> list[str]:
    """Return the matched fragments of known prompt injection phrases."""
    matches = []
    for pattern in INJECTION_PATTERNS:
        match = pattern.search(text)
        if match:
            matches.append(match.group(0))
    return matches


def generate_commit_message(task_id: str, title: str, agent_output: str) -> str:
    """Build a commit message from the task and the tail of the agent's output.

    The last substantial prose line of the output (ignoring headings, code
    fences and bullets) becomes the commit body when it is short enough.
    """
    header = f"[CU-{task_id}] {title}"
    lines = [line.strip() for line in agent_output.strip().splitlines() if line.strip()]
    for line in reversed(lines[-10:]):
        if len(line) > 20 and not line.startswith(("#", "```", "-")):
            if len(line) < 200:
                return f"{header}\n\n{line}"
            break
    return header


def extract_summary_lines(output: str, max_lines: int = 10, max_length: int = 1000) -> list[str]:
    """Return the last substantive prose lines of agent output.

    Code blocks, tool markers (``[Edit] ...``), shell commands and very short
    lines are skipped.
    """
    substantive = []
    in_code_block = False
    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith("```"):
            in_code_block = not in_code_block
            continue
        if in_code_block or len(line) < 15:
            continue
        if line.startswith("[") or line.startswith("$") or line.startswith("Co-Authored-By:"):
            continue
        substantive.append(line)

    result: list[str] = []
    total = 0
    for line in reversed(substantive):
        if len(result) >= max_lines or total + len(line) > max_length:
            break
        result.insert(0, line)
        total += len(line)
    return result


def generate_work_summary(agent_output: str, changed_files: list[str]) -> str:
    """Markdown summary of what the agent did, for a tracker comment."""
    parts = []
    summary_lines = extract_summary_lines(agent_output)
    if summary_lines:
        parts.extend(["**What was done:**", "\n".join(summary_lines), ""])
    if changed_files:
        parts.append("**Files changed:**")
        parts.extend(f"- `{path}`" for path in changed_files)
    return "\n".join(parts).strip()
