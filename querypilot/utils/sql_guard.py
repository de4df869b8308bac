"""
SQL Guard

Read-only gate shared by the agent tools, the direct query route, and the
chat-mode repair loop, plus the small SQL text helpers they need.

Two checks guard every statement before it reaches the database:
    1. A mutation denylist of regular expressions, matched case-insensitively
       against the statement with line and block comments removed.
    2. A prefix check on the trimmed, comment-free statement.
"""

import re
from dataclasses import dataclass
from enum import StrEnum

import sqlparse
from sqlparse import tokens as T

DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bDELETE\s+FROM\b",
        r"\bDROP\s+(TABLE|DATABASE|SCHEMA|INDEX|VIEW|FUNCTION|TRIGGER)\b",
        r"\bTRUNCATE\s+(TABLE)?\b",
        r"\bALTER\s+(TABLE|DATABASE|SCHEMA)\b",
        r"\bCREATE\s+(TABLE|DATABASE|SCHEMA|INDEX)\b",
        r"\bINSERT\s+INTO\b",
        r"\bUPDATE\s+\w+\s+SET\b",
        r"\bGRANT\b",
        r"\bREVOKE\b",
        r"\bEXEC(UTE)?\s*\(",
        r"\bCALL\s+\w+",
    )
)

QUERY_PREFIXES: tuple[str, ...] = ("SELECT", "WITH", "EXPLAIN")
VALIDATION_PREFIXES: tuple[str, ...] = ("SELECT", "WITH")

_LINE_COMMENT = re.compile(r"--.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_TRAILING_SEMICOLON = re.compile(r";\s*$")
_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")

_SIMPLE_EXPRESSION = re.compile(r"^(SELECT|WITH)\s+[\w\s(),*'\":.+-]+$", re.IGNORECASE)
_SQL_KEYWORDS = ("SELECT", "FROM", "WHERE", "JOIN", "GROUP BY", "ORDER BY", "LIMIT", "WITH", "AS")
_PROMPT_PHRASES: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bI need\b",
        r"\bplease (provide|clarify|specify|tell)\b",
        r"\b(could|can|would) you\b",
        r"\bI('m| am) (sorry|not sure|unable)\b",
        r"\bI (cannot|can't|don't|do not)\b",
        r"\bunfortunately\b",
        r"\bhere (is|are) the\b",
    )
)


class GateRejection(StrEnum):
    MUTATION = "mutation"
    PREFIX = "prefix"


@dataclass(frozen=True)
class SqlCheck:
    """Outcome of the plausibility heuristic for model-written SQL."""

    valid: bool
    reason: str | None = None


def strip_comments(sql: str) -> str:
    """Remove ``--`` line comments and ``/* */`` block comments."""
    return _LINE_COMMENT.sub("", _BLOCK_COMMENT.sub("", sql))


def is_mutation_query(sql: str) -> bool:
    """True if the comment-free statement matches any denylist pattern."""
    normalized = strip_comments(sql)
    return any(pattern.search(normalized) for pattern in DANGEROUS_PATTERNS)


def has_allowed_prefix(sql: str, prefixes: tuple[str, ...] = QUERY_PREFIXES) -> bool:
    """True if the trimmed, comment-free statement starts with one of ``prefixes``."""
    leading = strip_comments(sql).lstrip()
    pattern = r"^(" + "|".join(re.escape(prefix) for prefix in prefixes) + r")\b"
    return re.match(pattern, leading, re.IGNORECASE) is not None


def check_read_only(
    sql: str, prefixes: tuple[str, ...] = QUERY_PREFIXES
) -> GateRejection | None:
    """Run both gates; return the first rejection or None when the SQL may run."""
    if is_mutation_query(sql):
        return GateRejection.MUTATION
    if not has_allowed_prefix(sql, prefixes):
        return GateRejection.PREFIX
    return None


def strip_trailing_semicolon(sql: str) -> str:
    return _TRAILING_SEMICOLON.sub("", sql.strip())


def has_top_level_limit(sql: str) -> bool:
    """True if the outermost statement already carries a LIMIT clause.

    A LIMIT inside a subquery or CTE body does not count. The lexer skips
    string literals, quoted identifiers and comments.
    """
    depth = 0
    for statement in sqlparse.parse(sql):
        for token in statement.flatten():
            if token.ttype is T.Punctuation:
                if token.value == "(":
                    depth += 1
                elif token.value == ")":
                    depth -= 1
            elif token.ttype in T.Keyword and token.normalized == "LIMIT" and depth == 0:
                return True
    return False


def apply_row_limit(sql: str, limit: int) -> tuple[str, bool]:
    """Append ``LIMIT limit`` unless the statement already has one.

    The limit goes on its own line so a trailing line comment cannot swallow it.

    Returns:
        Tuple of (sql to run, whether a LIMIT was added)
    """
    statement = strip_trailing_semicolon(sql)
    if has_top_level_limit(statement):
        return statement, False
    return f"{statement}\nLIMIT {limit}", True


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence from model output."""
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def looks_like_sql(sql: str | None) -> SqlCheck:
    """Heuristic check that model output is a real SELECT/WITH statement.

    Rejects echoed prompts and prose: the statement must start with SELECT or
    WITH, carry a FROM clause unless it is a bare expression, use at least two
    SQL keywords, and contain none of the conversational phrases models emit
    when they answer in prose.
    """
    if not sql or not sql.strip():
        return SqlCheck(False, "No SQL provided")

    trimmed = sql.strip()
    if not has_allowed_prefix(trimmed, VALIDATION_PREFIXES):
        return SqlCheck(False, "SQL must start with SELECT or WITH")

    for phrase in _PROMPT_PHRASES:
        if phrase.search(trimmed):
            return SqlCheck(False, "Output reads like a request rather than SQL")

    is_simple = _SIMPLE_EXPRESSION.match(trimmed) is not None
    if not re.search(r"\bFROM\b", trimmed, re.IGNORECASE) and not is_simple:
        return SqlCheck(False, "SQL appears to be malformed - missing FROM clause")

    upper = trimmed.upper()
    keyword_count = sum(1 for keyword in _SQL_KEYWORDS if keyword in upper)
    if keyword_count < 2 and not is_simple:
        return SqlCheck(False, "SQL lacks sufficient SQL keywords")

    return SqlCheck(True)


def format_sql(sql: str) -> str:
    """Reindent SQL for display; returns the input unchanged if it is blank."""
    if not sql.strip():
        return sql
    return sqlparse.format(sql, reindent=True, keyword_case="upper").strip()


def quote_identifier(name: str) -> str:
    value = name.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1].replace('""', '"')
    return '"' + value.replace('"', '""') + '"'


def quote_table_reference(reference: str) -> str:
    """Quote each part of ``table`` or ``schema.table``, keeping quoted dots intact."""
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in reference.strip():
        if char == '"':
            in_quotes = not in_quotes
        if char == "." and not in_quotes:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return ".".join(quote_identifier(part) for part in parts if part.strip())
