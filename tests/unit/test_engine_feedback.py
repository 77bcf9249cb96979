"""Tests for automation comment detection and review feedback assembly."""

import pytest

from clawup.engine.feedback import (
    NO_SPECIFIC_FEEDBACK,
    build_review_feedback,
    is_automation_comment,
    new_feedback_comments,
)
from clawup.models.domain import Comment, ReviewComment, ReviewDecision


def comment(text: str, author: str | None = "dana") -> Comment:
    return Comment(id=text[:8], text=text, author=author)


class TestAutomationComments:
    @pytest.mark.parametrize(
        "text",
        [
            "🤖 Automation picked up this task",
            "  ✅ Automation completed!",
            "🔀 PR has merge conflicts",
            "✅ PR merged successfully: url",
        ],
    )
    def test_recognized(self, text):
        assert is_automation_comment(text)

    def test_human_comment(self):
        assert not is_automation_comment("Looks good, but rename the button 🤖 Automation")

    @pytest.mark.parametrize(
        "text",
        [
            "@dana ⚠️ Automation encountered an error but made partial changes.",
            "@Dana Smith 🔍 Automation needs more information to complete this task:",
            "@lee ❌ Automation encountered an error:",
        ],
    )
    def test_creator_notifications_recognized(self, text):
        assert is_automation_comment(text)

    def test_human_mention_is_not_automation(self):
        assert not is_automation_comment("@dana can you rename the submit button?")


class TestNewFeedbackComments:
    def test_only_after_last_automation_comment(self):
        comments = [
            comment("Please use OAuth"),
            comment("🤖 Automation picked up this task"),
            comment("Old note"),
            comment("✅ Automation completed! Ready for review"),
            comment("Rename the submit button"),
            comment("   "),
            comment("Also add a forgot-password link"),
        ]

        assert [c.text for c in new_feedback_comments(comments)] == [
            "Rename the submit button",
            "Also add a forgot-password link",
        ]

    def test_all_human_comments_when_engine_never_commented(self):
        comments = [comment("first"), comment(""), comment("second")]

        assert [c.text for c in new_feedback_comments(comments)] == ["first", "second"]

    def test_nothing_new(self):
        assert new_feedback_comments([comment("note"), comment("🤖 Automation is continuing work")]) == []

    def test_notification_to_creator_ends_feedback_window(self):
        comments = [
            comment("🤖 Automation picked up this task"),
            comment("Use the brand color"),
            comment("@dana ⚠️ Automation encountered an error but made partial changes.", author="clawup"),
        ]

        assert new_feedback_comments(comments) == []


class TestBuildReviewFeedback:
    def test_all_sections(self):
        feedback = build_review_feedback(
            ReviewDecision.CHANGES_REQUESTED,
            [ReviewComment(author="lee", body="Needs tests ")],
            [
                ReviewComment(author="lee", body="Typo", path="src/login.py", line=12),
                ReviewComment(author="kim", body="Whole file", path="src/form.py"),
            ],
            [comment("Use the brand color", author=None)],
        )

        assert feedback == (
            "### GitHub PR Reviews\n**lee**:\nNeeds tests\n"
            "\n\n"
            "### GitHub Inline Code Comments\n"
            "**lee** on `src/login.py:12`:\nTypo\n\n"
            "**kim** on `src/form.py`:\nWhole file\n"
            "\n\n"
            "### ClickUp Review Comments\n**Unknown**:\nUse the brand color"
        )

    def test_changes_requested_without_comments(self):
        assert build_review_feedback(ReviewDecision.CHANGES_REQUESTED, [], [], []) == NO_SPECIFIC_FEEDBACK

    @pytest.mark.parametrize("decision", [ReviewDecision.NONE, ReviewDecision.APPROVED])
    def test_nothing_to_address(self, decision):
        assert build_review_feedback(decision, [], [], []) is None
