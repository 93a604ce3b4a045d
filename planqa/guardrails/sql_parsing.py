"""
Structural SQL reader for the supported query subset.

The guardrails never need a full grammar: they need to know where each
SELECT block starts and ends, which clause every token belongs to, which
tables are referenced (and under which alias), and the exact character
offsets of all of it so rewrites can be spliced into the original text.

Tokens come from sqlparse's lexer. On top of the flat token stream this
module tracks parenthesis depth and groups tokens into query blocks:
one SELECT plus its FROM / JOIN / ON / WHERE / GROUP BY / HAVING /
ORDER BY clauses at a single depth. CTE bodies and subqueries become
their own blocks, so a WHERE inside a subquery is never mistaken for the
outer query's WHERE.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property

from sqlparse import tokens as T
from sqlparse.lexer import tokenize as lex

from planqa.models.schema import qualify_table_name, strip_identifier_quotes

# Token kinds
WORD = "word"
QUOTED = "quoted"
STRING = "string"
NUMBER = "number"
PUNCT = "punct"
OPERATOR = "operator"
COMPARISON = "comparison"
WILDCARD = "wildcard"
VARIABLE = "variable"
WHITESPACE = "whitespace"
COMMENT = "comment"
OTHER = "other"

JOIN_KEYWORDS = frozenset({"JOIN", "APPLY"})
SET_OPERATORS = frozenset({"UNION", "UNION ALL", "INTERSECT", "EXCEPT"})
TAIL_KEYWORDS = frozenset({"OPTION", "FOR", "OFFSET", "FETCH"})

# Keywords that end a table reference instead of naming its alias.
ALIAS_STOPWORDS = frozenset(
    {
        "WHERE", "GROUP", "GROUP BY", "ORDER", "ORDER BY", "HAVING", "ON", "JOIN",
        "INNER", "LEFT", "RIGHT", "FULL", "OUTER", "CROSS", "APPLY", "UNION",
        "UNION ALL", "INTERSECT", "EXCEPT", "OPTION", "FOR", "WITH", "OFFSET",
        "FETCH", "AS", "PIVOT", "UNPIVOT", "TABLESAMPLE",
    }
)


def is_join_keyword(keyword: str) -> bool:
    """``JOIN`` in any of its forms, plus ``CROSS/OUTER APPLY``."""
    return keyword in JOIN_KEYWORDS or keyword.endswith(" JOIN")


@dataclass(frozen=True)
class SqlToken:
    """One lexer token with its position and parenthesis depth."""

    kind: str
    value: str
    start: int
    depth: int
    index: int

    @property
    def end(self) -> int:
        return self.start + len(self.value)

    @property
    def keyword(self) -> str:
        """Upper-cased, whitespace-normalized value for unquoted words."""
        if self.kind != WORD:
            return ""
        return " ".join(self.value.upper().split())

    @property
    def is_significant(self) -> bool:
        return self.kind not in (WHITESPACE, COMMENT)

    @property
    def is_identifier(self) -> bool:
        return self.kind == QUOTED or (self.kind == WORD and " " not in self.value.strip())

    @property
    def name(self) -> str:
        return strip_identifier_quotes(self.value)

    def is_punct(self, char: str) -> bool:
        return self.kind == PUNCT and self.value == char


def _kind_of(ttype, value: str) -> str:
    if ttype in T.Comment:
        return COMMENT
    if ttype in T.Whitespace:
        return WHITESPACE
    if ttype in T.String.Symbol:
        return QUOTED
    if ttype in T.String:
        return STRING
    if ttype in T.Number:
        return NUMBER
    if ttype in T.Literal:
        return STRING
    if ttype in T.Name.Placeholder:
        return VARIABLE
    if ttype in T.Name:
        if value[:1] in ("[", "`"):
            return QUOTED
        if value[:1] in ("@", "#"):
            return VARIABLE
        return WORD
    if ttype in T.Keyword:
        return WORD
    if ttype in T.Punctuation:
        return PUNCT
    if ttype in T.Operator.Comparison:
        return COMPARISON
    if ttype in T.Operator:
        return OPERATOR
    if ttype in T.Wildcard:
        return WILDCARD
    return OTHER


def tokenize(sql: str) -> list[SqlToken]:
    """Lex SQL into positioned tokens annotated with parenthesis depth."""
    tokens: list[SqlToken] = []
    offset = 0
    depth = 0
    for ttype, value in lex(sql):
        kind = _kind_of(ttype, value)
        if kind == PUNCT and value == "(":
            token_depth = depth
            depth += 1
        elif kind == PUNCT and value == ")":
            depth = max(depth - 1, 0)
            token_depth = depth
        else:
            token_depth = depth
        tokens.append(SqlToken(kind, value, offset, token_depth, len(tokens)))
        offset += len(value)
    return tokens


def read_dotted_name(tokens: list[SqlToken], i: int) -> tuple[list[SqlToken], int]:
    """
    Read ``a``, ``a.b`` or ``a.b.c`` (each part bare, bracketed or quoted)
    from a list of significant tokens starting at ``i``.

    A trailing ``.*`` is returned as a wildcard part.
    """
    parts = [tokens[i]]
    j = i + 1
    while (
        j + 1 < len(tokens)
        and tokens[j].is_punct(".")
        and (tokens[j + 1].is_identifier or tokens[j + 1].kind == WILDCARD)
    ):
        parts.append(tokens[j + 1])
        j += 2
        if parts[-1].kind == WILDCARD:
            break
    return parts, j


@dataclass(frozen=True)
class Clause:
    """A clause of a query block, as a half-open token index range."""

    name: str
    keyword: SqlToken
    start: int
    end: int


@dataclass(frozen=True)
class TopClause:
    """``TOP n`` / ``TOP (n)`` with optional ``PERCENT`` / ``WITH TIES``."""

    start: int
    end: int
    value: int | None
    percent: bool


@dataclass
class QueryBlock:
    """One SELECT at a single parenthesis depth."""

    index: int
    select: SqlToken
    depth: int
    start: int
    end: int
    clauses: list[Clause] = field(default_factory=list)
    top: TopClause | None = None
    select_list_start: int = 0

    def clause(self, name: str) -> Clause | None:
        for clause in self.clauses:
            if clause.name == name:
                return clause
        return None

    def clauses_named(self, *names: str) -> list[Clause]:
        return [clause for clause in self.clauses if clause.name in names]


@dataclass(frozen=True)
class TableRef:
    """A table referenced in a FROM or JOIN clause."""

    parts: tuple[str, ...]
    alias: str | None
    block_index: int
    start: int
    end: int
    text: str
    is_function: bool = False

    @property
    def qualified_name(self) -> str:
        return qualify_table_name(".".join(self.parts))

    @property
    def schema(self) -> str | None:
        return self.parts[-2] if len(self.parts) >= 2 else None

    @property
    def table(self) -> str:
        return self.parts[-1]

    @property
    def reference_prefix(self) -> str:
        """What a column predicate should be qualified with."""
        return self.alias or self.text


class ParsedQuery:
    """
    Block-structured view over one SQL statement.

    Example:
        >>> parsed = ParsedQuery("SELECT JobName FROM [publish].[DASHt_Planning] p WHERE p.JobLate = 1")
        >>> parsed.table_refs[0].alias
        'p'
        >>> parsed.main_block.clause("where") is not None
        True
    """

    def __init__(self, sql: str):
        self.sql = sql
        self.tokens = tokenize(sql)
        self.blocks = self._find_blocks()
        self._owner = self._assign_owners()
        for block in self.blocks:
            self._segment(block)

    # ------------------------------------------------------------------
    # Statement-level facts
    # ------------------------------------------------------------------

    @cached_property
    def significant(self) -> list[SqlToken]:
        return [token for token in self.tokens if token.is_significant]

    @property
    def first_keyword(self) -> str:
        for token in self.significant:
            return token.keyword
        return ""

    @property
    def is_cte(self) -> bool:
        return self.first_keyword == "WITH"

    @property
    def terminators(self) -> list[SqlToken]:
        return [token for token in self.tokens if token.is_punct(";")]

    @property
    def main_block(self) -> QueryBlock | None:
        for block in self.blocks:
            if block.depth == 0:
                return block
        return None

    @cached_property
    def cte_names(self) -> set[str]:
        """Names defined by a leading WITH clause (lower-cased)."""
        if not self.is_cte:
            return set()
        main = self.main_block
        limit = main.start if main else len(self.tokens)
        head = [t for t in self.significant if t.depth == 0 and t.index < limit]
        names: set[str] = set()
        for k, token in enumerate(head[1:], start=1):
            if not token.is_identifier or token.keyword == "AS":
                continue
            following = head[k + 1 : k + 4]
            if following and following[0].keyword == "AS":
                names.add(token.name.lower())
            elif (
                len(following) == 3
                and following[0].is_punct("(")
                and following[1].is_punct(")")
                and following[2].keyword == "AS"
            ):
                names.add(token.name.lower())
        return names

    @cached_property
    def _sources(self) -> tuple[list[TableRef], set[str]]:
        refs: list[TableRef] = []
        derived: set[str] = set()
        for block in self.blocks:
            for clause in block.clauses_named("from", "join"):
                refs.extend(self._read_table_refs(block, clause, derived))
        refs.sort(key=lambda ref: ref.start)
        return refs, derived

    @cached_property
    def table_refs(self) -> list[TableRef]:
        """Every FROM/JOIN table reference, in textual order."""
        return [ref for ref in self._sources[0] if not ref.is_function]

    @cached_property
    def rowset_functions(self) -> list[TableRef]:
        """FROM/JOIN items that call a function: ``OPENQUERY(...)``, table-valued functions."""
        return [ref for ref in self._sources[0] if ref.is_function]

    @property
    def derived_aliases(self) -> set[str]:
        """Aliases given to ``FROM (SELECT ...) alias`` derived tables (lower-cased)."""
        return self._sources[1]

    @property
    def has_set_operator(self) -> bool:
        """UNION / INTERSECT / EXCEPT between top-level SELECTs."""
        return any(token.depth == 0 and token.keyword in SET_OPERATORS for token in self.tokens)

    @property
    def has_join(self) -> bool:
        return any(is_join_keyword(token.keyword) for token in self.tokens)

    def keywords(self) -> set[str]:
        return {token.keyword for token in self.tokens if token.kind == WORD}

    # ------------------------------------------------------------------
    # Block helpers
    # ------------------------------------------------------------------

    def own_tokens(self, block: QueryBlock, start: int, end: int) -> list[SqlToken]:
        """Significant tokens in [start, end) that belong to ``block`` itself."""
        return [
            self.tokens[i]
            for i in range(start, end)
            if self._owner[i] is block and self.tokens[i].is_significant
        ]

    def clause_tokens(self, block: QueryBlock, clause: Clause) -> list[SqlToken]:
        return self.own_tokens(block, clause.start, clause.end)

    def select_list_tokens(self, block: QueryBlock) -> list[SqlToken]:
        end = block.clauses[0].keyword.index if block.clauses else block.end
        return self.own_tokens(block, block.select_list_start, end)

    def block_text(self, start: int, end: int) -> str:
        """Original text of a token range with comments blanked out."""
        return "".join(
            " " if token.kind == COMMENT else token.value for token in self.tokens[start:end]
        ).strip()

    def next_significant(self, token: SqlToken) -> SqlToken | None:
        for i in range(token.index + 1, len(self.tokens)):
            if self.tokens[i].is_significant:
                return self.tokens[i]
        return None

    def last_significant(self, block: QueryBlock) -> SqlToken | None:
        for i in range(block.end - 1, block.start - 1, -1):
            if self.tokens[i].is_significant:
                return self.tokens[i]
        return None

    def refs_in_block(self, block: QueryBlock) -> list[TableRef]:
        return [ref for ref in self.table_refs if ref.block_index == block.index]

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _find_blocks(self) -> list[QueryBlock]:
        blocks: list[QueryBlock] = []
        for token in self.tokens:
            if token.keyword != "SELECT":
                continue
            end = len(self.tokens)
            for j in range(token.index + 1, len(self.tokens)):
                other = self.tokens[j]
                if other.depth < token.depth or other.is_punct(";"):
                    end = j
                    break
                if other.depth == token.depth and other.keyword in SET_OPERATORS:
                    end = j
                    break
            blocks.append(
                QueryBlock(
                    index=len(blocks),
                    select=token,
                    depth=token.depth,
                    start=token.index,
                    end=end,
                )
            )
        return blocks

    def _assign_owners(self) -> list[QueryBlock | None]:
        owner: list[QueryBlock | None] = [None] * len(self.tokens)
        # Blocks are ordered by start; nested blocks start later and overwrite.
        for block in self.blocks:
            for i in range(block.start, block.end):
                owner[i] = block
        return owner

    def _segment(self, block: QueryBlock) -> None:
        markers: list[tuple[str, SqlToken]] = []
        for i in range(block.start + 1, block.end):
            token = self.tokens[i]
            if self._owner[i] is not block or token.depth != block.depth:
                continue
            keyword = token.keyword
            if keyword == "FROM":
                markers.append(("from", token))
            elif is_join_keyword(keyword):
                markers.append(("join", token))
            elif keyword == "ON":
                markers.append(("join_on", token))
            elif keyword == "WHERE":
                markers.append(("where", token))
            elif keyword == "GROUP BY":
                markers.append(("group_by", token))
            elif keyword == "HAVING":
                markers.append(("having", token))
            elif keyword == "ORDER BY":
                markers.append(("order_by", token))
            elif keyword in TAIL_KEYWORDS:
                markers.append(("tail", token))

        for k, (name, token) in enumerate(markers):
            end = markers[k + 1][1].index if k + 1 < len(markers) else block.end
            block.clauses.append(Clause(name, token, token.index + 1, end))

        self._read_select_head(block)

    def _read_select_head(self, block: QueryBlock) -> None:
        end = block.clauses[0].keyword.index if block.clauses else block.end
        head = self.own_tokens(block, block.start + 1, end)
        k = 0
        if k < len(head) and head[k].keyword in ("DISTINCT", "ALL"):
            k += 1
        if k < len(head) and head[k].keyword == "TOP":
            top_start = head[k].index
            k += 1
            value: int | None = None
            if k < len(head) and head[k].is_punct("("):
                inner: list[SqlToken] = []
                k += 1
                while k < len(head) and not (
                    head[k].is_punct(")") and head[k].depth == block.depth
                ):
                    inner.append(head[k])
                    k += 1
                if len(inner) == 1 and inner[0].kind == NUMBER and inner[0].value.isdigit():
                    value = int(inner[0].value)
                k += 1
            elif k < len(head) and head[k].kind == NUMBER:
                if head[k].value.isdigit():
                    value = int(head[k].value)
                k += 1
            percent = False
            if k < len(head) and head[k].keyword == "PERCENT":
                percent = True
                k += 1
            if k + 1 < len(head) and head[k].keyword == "WITH" and head[k + 1].keyword == "TIES":
                k += 2
            top_end = head[k - 1].index + 1
            block.top = TopClause(top_start, top_end, value, percent)
        block.select_list_start = head[k].index if k < len(head) else end

    def _read_table_refs(self, block: QueryBlock, clause: Clause, derived: set[str]) -> list[TableRef]:
        toks = self.clause_tokens(block, clause)
        refs: list[TableRef] = []
        i = 0
        while i < len(toks):
            token = toks[i]
            if token.is_punct("("):
                # Derived table; its SELECT is a nested block. Skip to the close.
                i = self._skip_parens(toks, i)
                alias, i = self._read_alias(toks, i)
                if alias:
                    derived.add(alias.lower())
            elif token.is_identifier and token.keyword not in ALIAS_STOPWORDS:
                parts, j = read_dotted_name(toks, i)
                is_function = j < len(toks) and toks[j].is_punct("(")
                if is_function:
                    j = self._skip_parens(toks, j)
                first, last = parts[0], toks[j - 1] if is_function else parts[-1]
                alias, j = self._read_alias(toks, j)
                refs.append(
                    TableRef(
                        parts=tuple(part.name for part in parts),
                        alias=alias,
                        block_index=block.index,
                        start=first.start,
                        end=last.end,
                        text=self.sql[first.start : last.end],
                        is_function=is_function,
                    )
                )
                i = j
            else:
                i += 1
                continue
            # Table hints: WITH (NOLOCK)
            if i + 1 < len(toks) and toks[i].keyword == "WITH" and toks[i + 1].is_punct("("):
                depth = toks[i + 1].depth
                i += 2
                while i < len(toks) and not (toks[i].is_punct(")") and toks[i].depth == depth):
                    i += 1
                i += 1
            if i < len(toks) and toks[i].is_punct(","):
                i += 1
                continue
            if clause.name == "join":
                break
            i = self._skip_to_comma(toks, i)
        return refs

    @staticmethod
    def _read_alias(toks: list[SqlToken], j: int) -> tuple[str | None, int]:
        if j < len(toks) and toks[j].keyword == "AS":
            if j + 1 < len(toks) and toks[j + 1].is_identifier:
                return toks[j + 1].name, j + 2
            return None, j + 1
        if (
            j < len(toks)
            and toks[j].is_identifier
            and (toks[j].kind == QUOTED or toks[j].keyword not in ALIAS_STOPWORDS)
        ):
            return toks[j].name, j + 1
        return None, j

    @staticmethod
    def _skip_parens(toks: list[SqlToken], i: int) -> int:
        """Index just past the parenthesis that closes ``toks[i]``."""
        depth = toks[i].depth
        i += 1
        while i < len(toks) and not (toks[i].is_punct(")") and toks[i].depth == depth):
            i += 1
        return min(i + 1, len(toks))

    @staticmethod
    def _skip_to_comma(toks: list[SqlToken], i: int) -> int:
        while i < len(toks) and not toks[i].is_punct(","):
            i += 1
        return i + 1 if i < len(toks) else i


def strip_trailing_terminator(sql: str) -> str:
    """Remove one trailing ``;`` (and surrounding whitespace)."""
    stripped = sql.strip()
    if stripped.endswith(";"):
        stripped = stripped[:-1].rstrip()
    return stripped


def inject_predicate(parsed: ParsedQuery, block: QueryBlock, predicate: str) -> str:
    """
    Add ``predicate`` to ``block``'s WHERE clause and return the new SQL.

    With an existing WHERE the original condition is kept intact inside
    parentheses: ``WHERE <predicate> AND (<original>)``. Without one a new
    WHERE is placed before GROUP BY / HAVING / ORDER BY / OPTION, or at the
    end of the block.
    """
    sql = parsed.sql
    tokens = parsed.tokens
    where = block.clause("where")
    if where is not None:
        original = parsed.block_text(where.start, where.end)
        if where.end < len(tokens):
            next_token = tokens[where.end]
            tail = sql[next_token.start :]
            separator = "" if next_token.is_punct(")") else " "
        else:
            tail = ""
            separator = ""
        condition = f"{predicate} AND ({original})" if original else predicate
        return f"{sql[: where.keyword.end]} {condition}{separator}{tail}"

    anchors = block.clauses_named("group_by", "having", "order_by", "tail")
    if anchors:
        position = anchors[0].keyword.start
        return f"{sql[:position]}WHERE {predicate} {sql[position:]}"

    last = parsed.last_significant(block)
    position = last.end if last is not None else len(sql)
    return f"{sql[:position]} WHERE {predicate}{sql[position:]}"
