"""Prompt construction for work-task sessions."""

from work_engine.core.validation import ValidationCommands
from work_engine.integrations.hosting import HostingPlatform


def _verify_steps(commands: ValidationCommands) -> str:
    return f"   {commands.check}\n   {commands.test}"


def _create_step(platform: HostingPlatform) -> str:
    tool = " ".join(platform.create_command)
    if platform.name == "gitlab":
        return f'{tool} --title "<concise title>" --description "<summary of changes>"'
    return f'{tool} --title "<concise title>" --body "<summary of changes>"'


def build_work_prompt(
    branch_name: str,
    description: str,
    commands: ValidationCommands,
    platform: HostingPlatform,
    context: str | None = None,
) -> str:
    """Prompt for the first session of a task."""
    parts = [
        f'You are working on a task. A git branch "{branch_name}" has been created and checked out.',
        f"\n## Task\n{description}",
    ]
    if context:
        parts.append(f"\n{context.strip()}")

    parts.append(
        "\n## Instructions\n"
        "1. Explore the codebase as needed to understand the context.\n"
        "2. Implement the changes on this branch.\n"
        "3. Commit with clear, descriptive messages as you go.\n"
        "4. Verify your changes work:\n"
        f"{_verify_steps(commands)}\n"
        "   Fix any issues before opening the change request.\n"
        "5. When done, push the branch and open a change request:\n"
        f"   {_create_step(platform)}\n"
        "6. Output the change request URL as the final line of your response."
    )
    parts.append(
        "\nImportant: You MUST open a change request when finished. "
        "Its URL will be captured to report back to the requester."
    )
    return "\n".join(parts)


def build_iteration_prompt(
    branch_name: str,
    diagnostic: str,
    commands: ValidationCommands,
    platform: HostingPlatform,
    iteration: int,
    max_iterations: int,
) -> str:
    """Prompt for a retry after validation failed."""
    return (
        f'You are on branch "{branch_name}". A previous session made changes but validation failed '
        f"(attempt {iteration} of {max_iterations}).\n"
        "\n## Validation Errors\n"
        f"```\n{diagnostic}\n```\n"
        "\n## Instructions\n"
        "1. Read the errors above carefully.\n"
        "2. Fix the static check and/or test failures on this branch.\n"
        "3. Commit your fixes with clear messages.\n"
        "4. Verify your changes work:\n"
        f"{_verify_steps(commands)}\n"
        "   Fix any remaining issues.\n"
        "5. If a change request already exists, push your fixes. If not, open one:\n"
        f"   {_create_step(platform)}\n"
        "6. Output the change request URL as the final line of your response.\n"
        "\nImportant: You MUST ensure all validation passes and output the change request URL."
    )


def build_fallback_pr_body(description: str, output: str) -> str:
    return (
        "Automated work task.\n\n"
        f"**Description:** {description}\n\n"
        f"**Summary:** {output[-300:].strip()}"
    )
