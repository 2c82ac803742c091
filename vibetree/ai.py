"""Helpers for driving AI coding CLIs (claude, codex, gemini)."""

import logging
import re
import subprocess

log = logging.getLogger("vibetree.ai")

AI_TOOL_PATTERN = re.compile(r"[A-Za-z0-9._-]+")

_PR_SUMMARY_PROMPT = """
Analyze the following git diff and generate a concise Pull Request title and a detailed description.
The description should summarize the changes and their impact.

Format your response EXACTLY like this:
TITLE: <concise title>
BODY:
<detailed description>

DIFF:
{diff}
"""

# Characters that keep a special meaning inside a double-quoted shell string
_SHELL_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "`": "\\`",
    "$": "\\$",
    "!": "\\!",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


class InvalidToolNameError(ValueError):
    """Raised when an AI tool name is not a plain executable name."""


class AIToolError(RuntimeError):
    """Raised when an AI tool fails to run."""


def validate_tool_name(tool: str) -> str:
    """Ensure the tool name is safe to place at the start of a shell command line.

    Raises:
        InvalidToolNameError: If the name contains anything outside [A-Za-z0-9._-]
    """
    if not tool or not AI_TOOL_PATTERN.fullmatch(tool):
        raise InvalidToolNameError(f"Invalid AI tool name: {tool!r}")
    return tool


def build_ai_prompt(title: str, description: str = "") -> str:
    parts = [f"Task: {title}"]
    if description and description.strip():
        parts.extend(["", description.strip()])
    return "\n".join(parts)


def escape_for_shell_double_quoted(text: str) -> str:
    return "".join(_SHELL_ESCAPES.get(ch, ch) for ch in text)


def build_ai_command(tool: str, title: str, description: str = "") -> str:
    """Build the line typed into a task terminal to start the AI tool.

    Returns:
        `<tool> "<escaped prompt>"` followed by a newline

    Raises:
        InvalidToolNameError: If the tool name is unsafe
    """
    validate_tool_name(tool)
    prompt = escape_for_shell_double_quoted(build_ai_prompt(title, description))
    return f'{tool} "{prompt}"\n'


def parse_pr_summary(output: str) -> tuple[str, str]:
    """Extract (title, body) from TITLE:/BODY: formatted tool output."""
    output = output.strip()
    title_match = re.search(r"^TITLE:\s*(.+)$", output, re.MULTILINE)
    body_match = re.search(r"^BODY:\s*(.+)\Z", output, re.MULTILINE | re.DOTALL)
    title = title_match.group(1).strip() if title_match else "Updated PR"
    body = body_match.group(1).strip() if body_match else output
    return title, body


def generate_pr_summary(tool: str, diff: str) -> tuple[str, str]:
    """Ask an AI CLI to write a PR title and body for a diff.

    The prompt is passed as a single argument; no shell is involved.

    Returns:
        (title, body)

    Raises:
        InvalidToolNameError: If the tool name is unsafe
        AIToolError: If the tool cannot be run or exits non-zero
    """
    validate_tool_name(tool)
    prompt = _PR_SUMMARY_PROMPT.format(diff=diff)

    try:
        result = subprocess.run(
            [tool, prompt],
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise AIToolError(f"AI tool not found: {tool}") from e
    except subprocess.CalledProcessError as e:
        log.error("AI tool %s failed: %s", tool, e.stderr)
        raise AIToolError(f"AI generation failed: {e.stderr or e}") from e

    if result.stderr and not result.stdout:
        log.warning("AI tool %s wrote only to stderr: %s", tool, result.stderr)

    return parse_pr_summary(result.stdout)
