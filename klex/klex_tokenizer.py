"""
Lexical scanner for Klex source text.

The token shapes are a koine grammar (klex_grammar.yaml): an ordered choice
tried at every position, whose last alternative accepts any single character.
Tokenization is therefore total and lossless: the concatenated token texts
always reproduce the input exactly. This module turns the grammar's tagged
leaves into Tokens, decoding literal values and assigning colors.

The only hard failures are an unparsable number and an unterminated string
literal. `tokenize(..., tolerant=True)` downgrades those to 'unknown' tokens
as well, which is what the highlighter uses.
"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml
from koine import Parser

from klex.klex_datatypes import LexFailure

_GRAMMAR_PATH = Path(__file__).parent / "klex_grammar.yaml"
_LEXICON_PATH = Path(__file__).parent / "klex_lexicon.yaml"
_lexicon: Optional[Dict[str, Any]] = None

# Tags of the grammar's leaf rules.
_LEAF_TAGS = frozenset((
    'whitespace', 'comment', 'open_comment', 'boolean', 'null', 'identifier',
    'string', 'open_string', 'number', 'symbol', 'unknown',
))

# Integer literals outside the signed 64-bit range are read as floats.
_INT_MIN = -2 ** 63
_INT_MAX = 2 ** 63 - 1

TRIVIA_KINDS = ('whitespace', 'comment')
LITERAL_KINDS = ('string', 'number', 'boolean', 'null')


def load_lexicon() -> Dict[str, Any]:
    """Loads the YAML lexicon shipped with the package (cached)."""
    global _lexicon
    if _lexicon is None:
        with _LEXICON_PATH.open(encoding="utf-8") as f:
            _lexicon = yaml.safe_load(f)
    return _lexicon


class Token:
    """A classified lexical unit.

    `text` is the exact source substring, `value` the decoded payload
    (identifier name, literal value, operator symbol), and `color` the
    highlight color or None.
    """
    def __init__(self, kind: str, text: str, pos: int, value: Any = None,
                 color: Optional[str] = None, closed: bool = True):
        self.kind = kind
        self.text = text
        self.pos = pos
        self.value = value
        self.color = color
        # Only meaningful for comments: False for a block comment cut off by end of input.
        self.closed = closed

    @property
    def end(self) -> int:
        return self.pos + len(self.text)

    @property
    def is_trivia(self) -> bool:
        return self.kind in TRIVIA_KINDS

    def __eq__(self, other):
        if not isinstance(other, Token):
            return NotImplemented
        return (self.kind, self.text, self.pos, self.value, self.closed) == \
               (other.kind, other.text, other.pos, other.value, other.closed)

    def __repr__(self) -> str:
        extra = "" if self.closed else ", closed=False"
        return f"Token({self.kind!r}, {self.text!r}, pos={self.pos}{extra})"


def _decode_string(text: str) -> str:
    """Strips the delimiters and decodes '\\\\' and a backslash before the delimiter."""
    delim, body = text[0], text[1:-1]
    chars = []
    i = 0
    while i < len(body):
        if body.startswith("\\\\", i):
            chars.append("\\")
            i += 2
        elif body.startswith("\\" + delim, i):
            chars.append(delim)
            i += 2
        else:
            chars.append(body[i])
            i += 1
    return "".join(chars)


def _number_value(text: str, pos: int):
    try:
        value = int(text)
    except ValueError:
        value = None
    if value is not None and _INT_MIN <= value <= _INT_MAX:
        return value
    try:
        return float(text)
    except ValueError:
        raise LexFailure(f"Unparsable number '{text}'", pos, pos + len(text)) from None


class Tokenizer:
    """Turns source text into an ordered list of Tokens."""

    _parser = None  # koine Parser for klex_grammar.yaml, shared by every instance

    def __init__(self, lexicon: Optional[Dict[str, Any]] = None):
        lex = lexicon or load_lexicon()
        self.keywords = frozenset(lex['keywords'])
        self.symbols: Dict[str, str] = dict(lex['symbols'])
        self.colors: Dict[str, str] = dict(lex['colors'])

        if Tokenizer._parser is None:
            Tokenizer._parser = Parser.from_file(str(_GRAMMAR_PATH))
        self.parser = Tokenizer._parser

    def tokenize(self, text: str, tolerant: bool = False) -> List[Token]:
        tokens: List[Token] = []
        pos = 0
        for leaf in self._leaves(self._parse(text)):
            token = self._convert(leaf['tag'], leaf['text'], pos, tolerant)
            tokens.append(token)
            pos = token.end
        if pos != len(text):
            raise LexFailure(f"Token grammar stopped at offset {pos}", pos, len(text))
        return tokens

    def _parse(self, text: str):
        if not text:
            return []
        parse_out = self.parser.parse(text)
        if isinstance(parse_out, dict) and 'status' in parse_out:
            if parse_out.get('status') != 'success':
                message = parse_out.get('error_message') or str(parse_out)
                raise LexFailure(f"Token grammar failed: {message}")
            return parse_out.get('ast')
        return parse_out

    def _leaves(self, node) -> Iterator[Dict[str, Any]]:
        """Yields the grammar's leaf nodes in source order."""
        if isinstance(node, list):
            for child in node:
                yield from self._leaves(child)
        elif isinstance(node, dict):
            if 'tag' not in node:
                # The 'ast' wrapper or a dict of named children.
                for child in node.values():
                    yield from self._leaves(child)
            elif 'children' in node:
                yield from self._leaves(node['children'])
            elif node['tag'] in _LEAF_TAGS:
                yield node

    def _convert(self, tag: str, text: str, pos: int, tolerant: bool) -> Token:
        try:
            return self._token_for(tag, text, pos)
        except LexFailure:
            if not tolerant:
                raise
            return self._make('unknown', text, pos)

    def _token_for(self, tag: str, text: str, pos: int) -> Token:
        match tag:
            case 'whitespace':
                return self._make('whitespace', text, pos)
            case 'comment':
                return self._make('comment', text, pos)
            case 'open_comment':
                return self._make('comment', text, pos, closed=False)
            case 'boolean':
                return self._make('boolean', text, pos, text == "true")
            case 'null':
                return self._make('null', text, pos, None)
            case 'identifier':
                return self._make('identifier', text, pos, text)
            case 'string':
                return self._make('string', text, pos, _decode_string(text))
            case 'open_string':
                raise LexFailure("Unterminated string literal", pos, pos + len(text))
            case 'number':
                return self._make('number', text, pos, _number_value(text, pos))
            case 'symbol':
                return self._make(self.symbols[text], text, pos, text)
            case _:
                return self._make('unknown', text, pos)

    def _make(self, kind: str, text: str, pos: int, value: Any = None, closed: bool = True) -> Token:
        return Token(kind, text, pos, value, self.color_for(kind, value), closed)

    def color_for(self, kind: str, value: Any = None) -> Optional[str]:
        match kind:
            case 'identifier':
                return self.colors['keyword'] if value in self.keywords else self.colors['identifier']
            case 'string':
                return self.colors['string']
            case 'boolean' | 'null':
                return self.colors['literal']
            case 'comment':
                return self.colors['comment']
            case 'unknown':
                return self.colors['unknown']
            case _:
                return None


_default_tokenizer: Optional[Tokenizer] = None


def get_tokenizer() -> Tokenizer:
    global _default_tokenizer
    if _default_tokenizer is None:
        _default_tokenizer = Tokenizer()
    return _default_tokenizer


def tokenize(text: str, tolerant: bool = False) -> List[Token]:
    """Tokenizes `text` with the default lexicon."""
    return get_tokenizer().tokenize(text, tolerant=tolerant)
