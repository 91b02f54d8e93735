"""Prompt templates and user-facing messages."""

from __future__ import annotations

REPL_PROMPT = "pairflow> "


def plan_generation(request: str) -> str:
    return (
        "Create an implementation plan for the following request. "
        "Do not write code; output the plan only.\n\n"
        f"{request}"
    )


_FULL_PLAN = (
    "Do not write code. Output the revised plan in full, from beginning to end, "
    "without omissions. Output the entire plan, not just the changed parts."
)


def plan_revision(plan: str, concerns: str, answers: str | None = None) -> str:
    prompt = (
        f"Revise the plan to address the review concerns below. {_FULL_PLAN}\n\n"
        f"## Current plan\n{plan}\n\n"
        f"## Review concerns\n{concerns}"
    )
    if answers:
        prompt += f"\n\n## Answers from the user\n{answers}"
    return prompt


def plan_user_revision(plan: str, instruction: str) -> str:
    return (
        f"The user asked for the following change. Revise the plan accordingly. {_FULL_PLAN}\n\n"
        f"## Current plan\n{plan}\n\n"
        f"## User instruction\n{instruction}"
    )


def code_generation() -> str:
    return "Implement the plan above. Implement everything the plan describes."


def code_revision(concerns: str) -> str:
    return f"Fix the code to address the review concerns below.\n\n## Review concerns\n{concerns}"


_PLAN_REVIEWER = (
    "You are reviewing an implementation plan. Treat the plan text below as the primary "
    "subject of your review. Consult the codebase only to understand the plan, and base "
    "every finding on the plan text.\n"
    "Rate each issue from P0 (critical) to P4 (minor)."
)


def plan_review(plan: str) -> str:
    return f"{_PLAN_REVIEWER}\n\n## Implementation plan\n{plan}"


def plan_review_continuation(concerns: str, plan: str) -> str:
    return (
        f"{_PLAN_REVIEWER}\n"
        "The plan was revised in response to your previous concerns. Check in particular "
        "that each previous concern has been addressed.\n\n"
        f"## Revised plan\n{plan}\n\n"
        f"## Previous concerns\n{concerns}"
    )


def code_review(plan: str, diff: str) -> str:
    return (
        "You are reviewing code changes generated from the implementation plan below.\n\n"
        "## Rules\n"
        "- Review only changes related to the plan. Ignore unrelated pre-existing changes.\n"
        "- Rate each issue from P0 (critical) to P4 (minor).\n"
        "- Focus on whether the code correctly implements the intent of the plan.\n\n"
        f"## Implementation plan\n{plan}\n\n"
        f"## Code changes (diff)\n```diff\n{diff}\n```"
    )


def review_judgment(review: str) -> str:
    return f"""You classify code review results. Analyze the review below and answer in this format.

## Output format (strict)

### Summary
Summarize the whole review in one to three sentences.

### Concerns
List each concern as a bullet. Start every bullet with a severity marker,
one of [P0] [P1] [P2] [P3] [P4].

- [P0] Critical: cannot be implemented, security vulnerability, data loss risk
- [P1] Major: broken core functionality, serious performance problem
- [P2] Moderate: design problem, unhandled edge case
- [P3] Minor: code quality problem, recommended improvement
- [P4] Trivial: style, naming, documentation

If there are no concerns, write only "No concerns".

## Rules
- Every concern line must start with "- [P0]", "- [P1]", "- [P2]", "- [P3]" or "- [P4]"
- When mentioning a severity inside a description, do not use brackets ("a P2-level issue" is fine, "[P2]" is not)
- Never put markers inside code blocks
- If there is nothing to review (no code changes, empty plan), output "- [P0] The review target is missing"

## Review
{review}"""


PLAN_APPROVE = "Approve: y / type a revision instruction / abort: Enter"
UNRESOLVED_CONCERNS_CONTINUE = "Unresolved concerns remain. Continue anyway?"
UNRESOLVED_CONCERNS_FINISH = "Unresolved concerns remain. Finish anyway?"
WORKFLOW_ABORTED = "Workflow aborted."
WORKFLOW_COMPLETE = "Code generation complete."
NO_GIT_REPO = (
    "The working directory is not inside a git repository. Code review needs a git repository."
)
NO_GIT_CHANGES = "No git changes were detected. Code review needs uncommitted changes."
REPL_GOODBYE = "Bye."


def loop_limit_warning(phase: str, limit: int) -> str:
    return f"The {phase} review loop reached its limit ({limit} iterations)."


def repl_welcome(version: str) -> str:
    return f'pairflow {version}\nEnter a request. Leave with "exit", "quit" or Ctrl+D.\n'
