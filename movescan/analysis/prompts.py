"""Prompt templates for contextual (LLM) analysis of Move code chunks."""

from ..models import Chunk

VULNERABILITY_CATEGORIES = [
    ("Transaction-Ordering Dependence", "race conditions"),
    ("Timestamp Dependence", "clock and epoch misuse"),
    ("Integer Overflow/Underflow", "unsafe arithmetic"),
    ("Rounding Errors", "precision loss in calculations"),
    ("Unchecked External Calls", "missing return checks"),
    ("Denial-of-Service", "gas exhaustion, infinite loops"),
    ("Access Control", "missing permission checks"),
    ("Centralization of Power", "single-key control"),
    ("Business Logic Issues", "flawed reward/permission logic"),
    ("Gas Usage Inefficiencies", "expensive operations"),
    ("Arbitrary Token Minting", "unchecked mint functions"),
    ("Reentrancy Attacks", "external calls before state updates"),
    ("Oracle Manipulation", "unvalidated price feeds"),
    ("Mutable Reference Leaks", "unsafe &mut sharing"),
    ("Insufficient Authorization", "missing capability checks"),
]


def _category_list() -> str:
    return "\n".join(f"{i}. {name} ({hint})" for i, (name, hint) in enumerate(VULNERABILITY_CATEGORIES, 1))


SYSTEM_PROMPT = f"""You are an expert Move smart contract auditor for the Sui blockchain. \
Analyze the provided code chunk for the following vulnerability categories:

{_category_list()}

Focus on business logic flaws, complex interaction patterns, capability misuse and \
subtle vulnerabilities that pattern-based static analysis might miss. \
Report only issues you can point to in the code."""


USER_PROMPT_TEMPLATE = """Analyze this Move code chunk for the vulnerability categories above:

File: {file_name}
Lines: {start_line}-{end_line}

```move
{content}
```

Return findings in this JSON format:
[
  {{
    "file": "{file_name}",
    "line": <line_number>,
    "category": "<category_name>",
    "description": "<detailed_description>",
    "severity": "critical|high|medium|low"
  }}
]

Line numbers may be absolute file lines ({start_line}-{end_line}) or relative to the chunk (1-{line_count}).
Only return actual vulnerabilities. If no vulnerabilities are found, return an empty array: []"""


def build_user_prompt(chunk: Chunk) -> str:
    return USER_PROMPT_TEMPLATE.format(
        file_name=chunk.file_name,
        start_line=chunk.start_line,
        end_line=chunk.end_line,
        line_count=chunk.line_count,
        content=chunk.content,
    )
