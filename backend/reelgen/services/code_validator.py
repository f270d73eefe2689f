"""Static checks for LLM-written composition code.

The composition body is executed by the renderer as
``new Function("React", "Remotion", "Components", "Theme", "images", "audioUrl", code)``,
so it must return a component and may not reach outside that sandbox.
"""

import re

from pydantic import BaseModel, Field

from reelgen.services.llm.base import strip_code_fences

# (pattern, label) pairs; any match is a security violation
FORBIDDEN_PATTERNS = (
    (re.compile(r"\bfetch\s*\("), "fetch()"),
    (re.compile(r"\beval\s*\("), "eval()"),
    (re.compile(r"\brequire\s*\("), "require()"),
    (re.compile(r"\bimport\s*\("), "import()"),
    (re.compile(r"^\s*import\s", re.MULTILINE), "import statement"),
    (re.compile(r"\bprocess\."), "process."),
    (re.compile(r"\bfs\."), "fs."),
    (re.compile(r"\bchild_process\b"), "child_process"),
    (re.compile(r"\bnew\s+Function\s*\("), "new Function()"),
    (re.compile(r"\bXMLHttpRequest\b"), "XMLHttpRequest"),
)

_RETURN_RE = re.compile(r"\breturn\s+[A-Za-z_$][\w$]*\s*;?\s*$")
_SEQUENCE_RE = re.compile(r"\bSequence\b")

MIN_CODE_LENGTH = 50


class SecurityResult(BaseModel):
    safe: bool
    violations: list[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


def extract_code(raw: str) -> str:
    """Pull the code body out of an LLM reply that may be wrapped in fences."""
    text = raw.strip()
    if "```" not in text:
        return text
    if text.startswith("```"):
        return strip_code_fences(text)
    # Prose before the fence: take the first fenced block
    match = re.search(r"```[\w-]*\n(.*?)```", text, re.DOTALL)
    return match.group(1).strip() if match else text


def validate_security(code: str) -> SecurityResult:
    violations = [label for pattern, label in FORBIDDEN_PATTERNS if pattern.search(code)]
    return SecurityResult(safe=not violations, violations=violations)


def validate_structure(code: str) -> list[str]:
    """Return structural problems (empty list when the code looks runnable)."""
    errors = []
    if len(code.strip()) < MIN_CODE_LENGTH:
        errors.append("Code is empty or too short to be a composition")
        return errors
    if not _RETURN_RE.search(code.rstrip()):
        errors.append("Code must end by returning the root component (e.g. `return MyVideo;`)")
    if not _SEQUENCE_RE.search(code):
        errors.append("Code must lay scenes out with Sequence")
    if code.count("{") != code.count("}"):
        errors.append("Unbalanced braces")
    if code.count("(") != code.count(")"):
        errors.append("Unbalanced parentheses")
    return errors


def validate_all(code: str) -> ValidationResult:
    """Run security and structural checks together."""
    errors = [f"Forbidden construct: {v}" for v in validate_security(code).violations]
    errors.extend(validate_structure(code))
    return ValidationResult(valid=not errors, errors=errors)
