"""
User prompt hygiene before the text reaches an inference provider.
This reduces the chance that the free-text field is read as instructions; it is not a security boundary.
"""
import re

MAX_PROMPT_LENGTH = 500

_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(previous|above|all)\s+instructions?", re.IGNORECASE),
    re.compile(r"disregard\s+(previous|above|all)\s+instructions?", re.IGNORECASE),
    re.compile(r"forget\s+(everything|all|previous)", re.IGNORECASE),
    re.compile(r"you\s+are\s+now", re.IGNORECASE),
    re.compile(r"act\s+as\s+if", re.IGNORECASE),
    re.compile(r"pretend\s+(to\s+be|you\s+are)", re.IGNORECASE),
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"\[/?INST\]", re.IGNORECASE),
    re.compile(r"</?system>", re.IGNORECASE),
    re.compile(r"new\s+instructions?:", re.IGNORECASE),
    re.compile(r"override\s+(previous|all)", re.IGNORECASE),
]
_DANGEROUS_CHARS = re.compile(r"[<>{}\[\]\\]")


def sanitize_user_prompt(prompt: str | None) -> str | None:
    """Trim, cap length, strip injection phrases and bracket characters. Empty result -> None."""
    if prompt is None:
        return None
    sanitized = prompt.strip()[:MAX_PROMPT_LENGTH]
    for pattern in _INJECTION_PATTERNS:
        sanitized = pattern.sub("", sanitized)
    sanitized = _DANGEROUS_CHARS.sub("", sanitized).strip()
    return sanitized or None


def wrap_user_prompt(prompt: str) -> str:
    """Frame user text as context about the food, not as commands."""
    return f'[User\'s description of the food: "{prompt}"]'
