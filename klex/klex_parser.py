"""
Recursive-descent parser turning a Klex token list into an AST.

Grammar (whitespace and comments are skipped between every symbol):

    statement     := wrappedScope | ifStmt | returnStmt | assignment | expression
    codeScope     := statement*
    wrappedScope  := '{' codeScope '}'
    assignment    := IDENT '=' expression
    returnStmt    := IDENT("return") expression
    ifStmt        := IDENT("if") '(' expression ')' statement (IDENT("else") statement)?
    basicExpr     := literal | IDENT | '(' expression ')'
    expression    := '!' expression
                   | basicExpr OPERATOR expression
                   | basicExpr '(' argList ')'
                   | basicExpr

Alternatives are ordered; each rule either returns a node or returns None
with the position restored. The left operand of a binary operator is only a
basicExpr, so operator chains have no precedence and group right to left:
`a - b - c` is `a - (b - c)`.

Keywords are plain identifiers compared by text where the grammar expects
them, so `if`, `return` or `else` remain usable as names elsewhere.
"""

from typing import Callable, List, Optional

from klex.klex_datatypes import (
    ParseFailure, Statement, Expression, CodeScope, Return, Assignment, If,
    Function, Invoke, OperatorExpr, NegateExpr, LiteralExpr, IdentifierExpr, GroupExpr
)
from klex.klex_tokenizer import Token, LITERAL_KINDS, tokenize

FUNCTION_KEYWORD = "function"
RETURN_KEYWORD = "return"
IF_KEYWORD = "if"
ELSE_KEYWORD = "else"


class Parser:
    """Parses one token list into a root CodeScope."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        # Furthest token index a match was attempted at; used for error reporting.
        self.furthest = 0
        # basicExpr results by start index; the expression alternatives all begin with one.
        self._basic_memo = {}

    # --- Token navigation ---

    def _peek(self) -> Optional[Token]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _skip_ws(self):
        while self.pos < len(self.tokens) and self.tokens[self.pos].is_trivia:
            self.pos += 1

    def _match(self, kind: str, text: Optional[str] = None) -> Optional[Token]:
        """Consumes the next token if it has `kind` (and `text`, when given)."""
        tok = self._peek()
        if tok is None or tok.kind != kind or (text is not None and tok.text != text):
            self.furthest = max(self.furthest, self.pos)
            return None
        self.pos += 1
        return tok

    def _attempt(self, rule: Callable[[], Optional[Statement]]) -> Optional[Statement]:
        """Runs `rule`, restoring the position if it does not match."""
        start = self.pos
        node = rule()
        if node is None:
            self.pos = start
        return node

    # --- Entry point ---

    def parse(self) -> CodeScope:
        try:
            root = self._code_scope()
        except RecursionError:
            # Each operator in a chain nests another expression rule.
            raise ParseFailure("Expression nested too deeply", self._pos_at(self.furthest)) from None
        self._skip_ws()
        if self.pos < len(self.tokens):
            idx = max(self.furthest, self.pos)
            tok = self.tokens[idx] if idx < len(self.tokens) else None
            if tok is None:
                raise ParseFailure("Unexpected end of input", self._end_pos())
            raise ParseFailure(f"Unexpected {tok.text!r}", tok.pos)
        return root

    def _end_pos(self) -> int:
        return self.tokens[-1].end if self.tokens else 0

    def _pos_at(self, idx: int) -> int:
        return self.tokens[idx].pos if idx < len(self.tokens) else self._end_pos()

    # --- Statements ---

    def _code_scope(self) -> CodeScope:
        statements = []
        self._skip_ws()
        start = self._peek()
        while True:
            stmt = self._attempt(self._statement)
            if stmt is None:
                break
            statements.append(stmt)
        return CodeScope(tuple(statements), pos=start.pos if start else None)

    def _statement(self) -> Optional[Statement]:
        self._skip_ws()
        for rule in (self._wrapped_scope, self._if_statement, self._return_statement,
                     self._assignment, self._expression):
            node = self._attempt(rule)
            if node is not None:
                self._skip_ws()
                return node
        return None

    def _wrapped_scope(self) -> Optional[CodeScope]:
        if self._match('open-curly') is None:
            return None
        scope = self._code_scope()
        self._skip_ws()
        if self._match('close-curly') is None:
            return None
        return scope

    def _assignment(self) -> Optional[Assignment]:
        iden = self._match('identifier')
        if iden is None:
            return None
        self._skip_ws()
        if self._match('assign') is None:
            return None
        self._skip_ws()
        value = self._expression()
        if value is None:
            return None
        return Assignment(iden.value, value, pos=iden.pos)

    def _return_statement(self) -> Optional[Return]:
        kw = self._match('identifier', RETURN_KEYWORD)
        if kw is None:
            return None
        self._skip_ws()
        value = self._expression()
        if value is None:
            return None
        return Return(value, pos=kw.pos)

    def _if_statement(self) -> Optional[If]:
        kw = self._match('identifier', IF_KEYWORD)
        if kw is None:
            return None
        self._skip_ws()
        if self._match('open-paren') is None:
            return None
        self._skip_ws()
        cond = self._expression()
        if cond is None:
            return None
        self._skip_ws()
        if self._match('close-paren') is None:
            return None
        then_branch = self._statement()
        if then_branch is None:
            return None
        save = self.pos
        self._skip_ws()
        if self._match('identifier', ELSE_KEYWORD) is None:
            self.pos = save
            return If(cond, then_branch, None, pos=kw.pos)
        # Past the keyword a missing branch fails the whole if.
        else_branch = self._statement()
        if else_branch is None:
            return None
        return If(cond, then_branch, else_branch, pos=kw.pos)

    # --- Expressions ---

    def _expression(self) -> Optional[Expression]:
        for rule in (self._negate, self._operator_expr, self._call_expr, self._basic_expr):
            node = self._attempt(rule)
            if node is not None:
                return node
        return None

    def _negate(self) -> Optional[NegateExpr]:
        bang = self._match('negate')
        if bang is None:
            return None
        self._skip_ws()
        value = self._expression()
        if value is None:
            return None
        return NegateExpr(value, pos=bang.pos)

    def _operator_expr(self) -> Optional[OperatorExpr]:
        left = self._basic_expr()
        if left is None:
            return None
        self._skip_ws()
        op = self._match('operator')
        if op is None:
            return None
        self._skip_ws()
        right = self._expression()
        if right is None:
            return None
        return OperatorExpr(left, right, op.value, pos=left.pos)

    def _call_expr(self) -> Optional[Expression]:
        callee = self._basic_expr()
        if callee is None:
            return None
        self._skip_ws()
        if self._match('open-paren') is None:
            return None
        if isinstance(callee, IdentifierExpr) and callee.name == FUNCTION_KEYWORD:
            return self._function_rest(callee)
        args = self._comma_list(self._expression, allow_trailing=False)
        if args is None:
            return None
        return Invoke(callee, tuple(args), pos=callee.pos)

    def _function_rest(self, keyword: IdentifierExpr) -> Optional[Function]:
        params = self._comma_list(self._param_name, allow_trailing=True)
        if params is None:
            return None
        body = self._statement()
        if body is None:
            return None
        return Function(tuple(params), body, pos=keyword.pos)

    def _param_name(self) -> Optional[str]:
        tok = self._match('identifier')
        return tok.value if tok is not None else None

    def _comma_list(self, item: Callable, allow_trailing: bool) -> Optional[list]:
        """Parses `[item] (',' item)* [','] ')'`; the closing paren is consumed."""
        items = []
        self._skip_ws()
        first = self._attempt(item)
        if first is not None:
            items.append(first)
        while True:
            start = self.pos
            self._skip_ws()
            if self._match('comma') is None:
                self.pos = start
                break
            self._skip_ws()
            nxt = self._attempt(item)
            if nxt is None:
                if not allow_trailing:
                    self.pos = start
                break
            items.append(nxt)
        self._skip_ws()
        if self._match('close-paren') is None:
            return None
        return items

    def _basic_expr(self) -> Optional[Expression]:
        start = self.pos
        if start in self._basic_memo:
            node, end = self._basic_memo[start]
            self.pos = end
            return node
        node = self._basic_expr_uncached()
        self._basic_memo[start] = (node, self.pos if node is not None else start)
        return node

    def _basic_expr_uncached(self) -> Optional[Expression]:
        tok = self._peek()
        if tok is None:
            self.furthest = max(self.furthest, self.pos)
            return None
        if tok.kind in LITERAL_KINDS:
            self.pos += 1
            return LiteralExpr(tok.value, pos=tok.pos)
        if tok.kind == 'identifier':
            self.pos += 1
            return IdentifierExpr(tok.value, pos=tok.pos)
        return self._attempt(self._group_expr)

    def _group_expr(self) -> Optional[GroupExpr]:
        open_tok = self._match('open-paren')
        if open_tok is None:
            return None
        self._skip_ws()
        inner = self._expression()
        if inner is None:
            return None
        self._skip_ws()
        if self._match('close-paren') is None:
            return None
        return GroupExpr(inner, pos=open_tok.pos)


def parse_tokens(tokens: List[Token]) -> CodeScope:
    """Parses a token list; raises ParseFailure if it is not a valid program."""
    return Parser(tokens).parse()


def parse_source(source: str) -> CodeScope:
    """Tokenizes then parses `source`; raises LexFailure or ParseFailure."""
    return parse_tokens(tokenize(source))
