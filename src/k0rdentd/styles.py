"""Styling for the interactive confirmation prompts of k0rdentd."""

from questionary import Style

# Destructive confirmations use a red question mark so they stand out
PROMPT_STYLE = Style(
    [
        ("qmark", "fg:#d70000 bold"),
        ("question", "bold"),
        ("answer", "fg:#00afaf bold"),
        ("instruction", "fg:#6c6c6c italic"),
        ("text", ""),
    ]
)

QMARK = "! "
