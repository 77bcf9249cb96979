"""Automation comment markers and review feedback collection.

Every comment the engine posts starts with one of ``AUTOMATION_PREFIXES``,
after the leading ``@username`` mention on notifications to the task
creator. Tracker comments posted after the most recent automation comment
are treated as new feedback from humans.
"""

import re

from clawup.models.domain import Comment, ReviewComment, ReviewDecision

AUTOMATION_PREFIXES = (
    "🤖 Automation",
    "✅ Automation",
    "⚠️ Automation",
    "❌ Automation",
    "🔄 Automation",
    "🔍 Automation",
    "🔀 PR has merge conflicts",
    "🔀 Automation",
    "✅ PR was already merged",
    "✅ PR merged",
)

# usernames may contain spaces, so the mention ends where a prefix starts
_LEADING_MENTION = re.compile(
    r"@[^\n]{1,64}?\s+(?=" + "|".join(re.escape(prefix) for prefix in AUTOMATION_PREFIXES) + ")"
)

NO_SPECIFIC_FEEDBACK = (
    "Changes were requested on the PR but no specific comments were provided. "
    "Please review the PR diff and improve the implementation."
)


def is_automation_comment(text: str) -> bool:
    body = text.lstrip()
    mention = _LEADING_MENTION.match(body)
    if mention:
        body = body[mention.end() :]
    return body.startswith(AUTOMATION_PREFIXES)


def new_feedback_comments(comments: list[Comment]) -> list[Comment]:
    """Human comments posted after the engine's last comment, oldest first.

    When the engine never commented, every non-empty human comment counts.
    """
    last_automation = -1
    for index, comment in enumerate(comments):
        if is_automation_comment(comment.text):
            last_automation = index
    return [
        c for c in comments[last_automation + 1 :] if c.text.strip() and not is_automation_comment(c.text)
    ]


def build_review_feedback(
    decision: ReviewDecision,
    reviews: list[ReviewComment],
    inline: list[ReviewComment],
    tracker_comments: list[Comment],
) -> str | None:
    """Combine PR reviews, inline code comments and new tracker comments.

    Returns:
        Markdown feedback text, or None when there is nothing to address.
        A ``CHANGES_REQUESTED`` decision without any comments still yields a
        generic request to revisit the implementation.
    """
    sections = []

    if reviews:
        lines = ["### GitHub PR Reviews"]
        lines.extend(f"**{r.author}**:\n{r.body.strip()}\n" for r in reviews)
        sections.append("\n".join(lines))

    if inline:
        lines = ["### GitHub Inline Code Comments"]
        for c in inline:
            location = f" on `{c.location}`" if c.location else ""
            lines.append(f"**{c.author}**{location}:\n{c.body.strip()}\n")
        sections.append("\n".join(lines))

    if tracker_comments:
        lines = ["### ClickUp Review Comments"]
        lines.extend(f"**{c.author or 'Unknown'}**:\n{c.text.strip()}\n" for c in tracker_comments)
        sections.append("\n".join(lines))

    if sections:
        return "\n\n".join(sections).strip()
    if decision is ReviewDecision.CHANGES_REQUESTED:
        return NO_SPECIFIC_FEEDBACK
    return None
