"""SQL text helpers built on the sqlparse lexer.

- ``extract_tables`` takes the identifier after each ``FROM``/``JOIN``; it
  misses comma joins, and subqueries yield nothing for that position.
- ``normalize_query`` redacts string, dollar-quoted and numeric literals.
- ``check_read_only`` is the guard every connector applies before a
  statement reaches the driver. It errs on the side of refusing.
"""

import re
from typing import Iterator, List, Optional, Tuple

import sqlparse
from sqlparse import lexer
from sqlparse import tokens as T

from dbpulse.core.utils import ListUtils

STATEMENT_TAG = "dbpulse"
# LIKE pattern matching every statement stamped by ``tag_statement``
STATEMENT_TAG_PATTERN = f"%{STATEMENT_TAG}:%"

READ_ONLY_KEYWORDS = frozenset({"SELECT", "WITH", "EXPLAIN", "SHOW"})

MUTATING_KEYWORDS = frozenset({
    "INSERT", "UPDATE", "DELETE", "MERGE", "UPSERT", "REPLACE", "TRUNCATE",
    "DROP", "ALTER", "CREATE", "RENAME", "GRANT", "REVOKE", "INTO", "COPY",
    "CALL", "EXEC", "EXECUTE", "VACUUM", "REINDEX", "CLUSTER",
    "LOCK", "KILL", "SHUTDOWN", "DBCC",
})

# Server functions that change state even from inside a SELECT
MUTATING_FUNCTIONS = frozenset({
    "PG_TERMINATE_BACKEND", "PG_CANCEL_BACKEND", "PG_STAT_STATEMENTS_RESET",
    "PG_STAT_RESET", "PG_RELOAD_CONF", "PG_ROTATE_LOGFILE", "SET_CONFIG",
    "SETVAL", "NEXTVAL", "LO_UNLINK", "PG_ADVISORY_LOCK", "GET_LOCK",
    "SLEEP", "PG_SLEEP",
})

# Both spellings make EXPLAIN execute the statement
_EXECUTING_EXPLAIN_OPTIONS = frozenset({"ANALYZE", "ANALYSE"})

_CLAUSE_KEYWORDS = frozenset({
    "WHERE", "SELECT", "LATERAL", "ON", "USING", "GROUP", "ORDER", "HAVING",
    "LIMIT", "OFFSET", "UNION", "WINDOW", "FOR", "WITH", "VALUES", "AS",
})

_POSITIONAL_PLACEHOLDER = re.compile(r"\$\d+")


def tag_statement(operation: str, sql: str) -> str:
    """Prefix ``sql`` with the ``/* dbpulse:<operation> */`` marker."""
    return f"/* {STATEMENT_TAG}:{operation} */ {sql.strip()}"


def statement_operation(sql: str) -> Optional[str]:
    """Return the operation name from a tagged statement, if present."""
    match = re.match(r"\s*/\*\s*" + STATEMENT_TAG + r":([\w.-]+)\s*\*/", sql)
    return match.group(1) if match else None


def _tokens(sql: str) -> Iterator[Tuple[object, str]]:
    return lexer.tokenize(sql or "")


def _is_significant(ttype) -> bool:
    # Newline is a subtype of Whitespace
    return ttype not in T.Whitespace and ttype not in T.Comment


def _words(ttype, value: str) -> List[str]:
    """Upper-cased keywords and names of one token; multi-word keywords are split."""
    if ttype in T.Keyword or (ttype in T.Name and ttype not in T.Name.Placeholder):
        return value.upper().split()
    return []


def normalize_query(query_text: str) -> str:
    """Redact literals so equivalent statements compare equal.

    Example:
        >>> normalize_query("SELECT * FROM users WHERE name = 'bob' AND id = 42")
        "SELECT * FROM users WHERE name = '?' AND id = ?"
    """
    parts = []
    for ttype, value in _tokens(query_text):
        if ttype in T.Number:
            parts.append("?")
        elif ttype in T.Literal and ttype not in T.String.Symbol:
            parts.append("'?'")
        else:
            parts.append(value)
    return "".join(parts)


def _identifier(value: str) -> str:
    return value.strip('"`[]')


def extract_tables(query_text: str) -> List[str]:
    """Return identifiers following FROM/JOIN, first-seen order, no duplicates.

    Example:
        >>> extract_tables("SELECT * FROM orders o JOIN customers c ON o.cid = c.id")
        ['orders', 'customers']
    """
    tokens = [(ttype, value) for ttype, value in _tokens(query_text)
              if ttype not in T.Comment]
    tables: List[str] = []

    index = 0
    while index < len(tokens):
        ttype, value = tokens[index]
        index += 1
        words = value.upper().split() if ttype in T.Keyword else []
        if not words or words[-1] not in ("FROM", "JOIN"):
            continue

        while index < len(tokens) and tokens[index][0] in T.Whitespace:
            index += 1

        # Dotted names arrive as name, ".", name tokens
        parts = []
        while index < len(tokens) and _is_table_name_token(*tokens[index]):
            parts.append(_identifier(tokens[index][1]))
            index += 1
            if index < len(tokens) and tokens[index] == (T.Punctuation, "."):
                index += 1
            else:
                break

        if parts and parts[0].upper() not in _CLAUSE_KEYWORDS:
            tables.append(".".join(parts))

    return ListUtils.deduplicate_list(tables)


def _is_table_name_token(ttype, value: str) -> bool:
    if ttype in T.String.Symbol:
        return True
    if ttype in T.Name:
        return ttype not in T.Name.Placeholder
    # Unquoted names such as ``data`` or ``events`` lex as keywords
    return (
        ttype in T.Keyword
        and ttype not in T.Keyword.DML
        and ttype not in T.Keyword.DDL
        and ttype not in T.Keyword.CTE
        and len(value.split()) == 1
    )


def has_positional_placeholders(query_text: str) -> bool:
    """True when the text still carries ``$n`` parameters outside literals."""
    return any(
        ttype in T.Name.Placeholder and _POSITIONAL_PLACEHOLDER.fullmatch(value)
        for ttype, value in _tokens(query_text)
    )


def leading_keyword(sql: str) -> str:
    """Return the first keyword of ``sql`` in upper case, ignoring comments."""
    for ttype, value in _tokens(sql):
        if not _is_significant(ttype) or (ttype is T.Punctuation and value == "("):
            continue
        words = _words(ttype, value)
        return words[0] if words else ""
    return ""


def _statement_count(sql: str) -> int:
    return sum(
        1 for statement in sqlparse.parse(sql or "")
        if any(_is_significant(token.ttype) and token.value != ";"
               for token in statement.flatten())
    )


def check_read_only(sql: str) -> Tuple[bool, str]:
    """Check whether ``sql`` is safe to run on a monitored engine.

    Returns:
        Tuple of (allowed, reason); reason is empty when allowed.
    """
    significant = [(ttype, value) for ttype, value in _tokens(sql) if _is_significant(ttype)]
    if any(ttype in T.Error for ttype, _ in significant):
        return False, "statement has unterminated quoting"
    # Engines disagree on whether a backslash escapes a quote
    if any(ttype in T.String.Single and "\\'" in value for ttype, value in significant):
        return False, "string literal has a backslash-escaped quote"

    semicolons = [i for i, (ttype, value) in enumerate(significant)
                  if ttype is T.Punctuation and value == ";"]
    trailing_only = not semicolons or semicolons == [len(significant) - 1]
    if _statement_count(sql) != 1 or not trailing_only:
        return False, "exactly one statement is allowed"

    keyword = leading_keyword(sql)
    if keyword not in READ_ONLY_KEYWORDS:
        return False, f"leading keyword {keyword or '<none>'} is not read-only"

    words = [word for ttype, value in significant for word in _words(ttype, value)]

    # Plain EXPLAIN only plans the statement; EXPLAIN ANALYZE runs it
    if keyword == "EXPLAIN" and _EXECUTING_EXPLAIN_OPTIONS.isdisjoint(words):
        return True, ""

    for word in words:
        if word in MUTATING_KEYWORDS:
            return False, f"statement contains {word}"
        if word in MUTATING_FUNCTIONS:
            return False, f"statement calls {word.lower()}"

    return True, ""


def is_read_only_statement(sql: str) -> bool:
    """Convenience wrapper around ``check_read_only``."""
    return check_read_only(sql)[0]
