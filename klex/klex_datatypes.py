"""
Defines the core data types for the Klex language runtime.

This module provides the error taxonomy, the closed set of AST node
variants produced by the parser, the Scope chain used for lexical lookup,
and the callable value types the evaluator works with.
"""

from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


# =================================================================
# Errors
# =================================================================

class KlexError(Exception):
    """Base class for every failure the Klex pipeline reports."""
    kind = "KlexError"

    def __init__(self, message: str, pos: Optional[int] = None):
        super().__init__(message)
        self.message = message
        # Character offset into the source, when known.
        self.pos = pos

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class LexFailure(KlexError):
    """Raised for an unparsable numeric literal or an unterminated string."""
    kind = "LexFailure"

    def __init__(self, message: str, pos: Optional[int] = None, end: Optional[int] = None):
        super().__init__(message, pos)
        # End offset of the offending fragment (exclusive).
        self.end = end


class ParseFailure(KlexError):
    """No grammar alternative matched at some position."""
    kind = "ParseFailure"


class ArityError(KlexError):
    """More arguments were supplied than a user function declares."""
    kind = "ArityError"


class KlexTypeError(KlexError):
    """Operator applied to unsupported operands, or a non-callable was invoked."""
    kind = "TypeError"


class KlexNameError(KlexError):
    """Identifier not found anywhere in the scope chain."""
    kind = "NameError"

    def __init__(self, name: str, pos: Optional[int] = None):
        super().__init__(f"'{name}' is not defined", pos)
        self.name = name


# =================================================================
# Sentinels
# =================================================================

class _NoReturn:
    """Marks a statement that completed without producing a return value."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_RETURN"


NO_RETURN = _NoReturn()


# =================================================================
# AST nodes
# =================================================================

@dataclass(frozen=True)
class Node:
    """Base of every AST node. `pos` is the source offset of the node's first token."""
    pos: Optional[int] = field(default=None, compare=False, repr=False, kw_only=True)


@dataclass(frozen=True)
class Statement(Node):
    pass


@dataclass(frozen=True)
class Expression(Statement):
    pass


@dataclass(frozen=True)
class CodeScope(Statement):
    statements: Tuple[Statement, ...] = ()


@dataclass(frozen=True)
class Return(Statement):
    value: Expression


@dataclass(frozen=True)
class Assignment(Statement):
    target: str
    value: Expression


@dataclass(frozen=True)
class If(Statement):
    cond: Expression
    then_branch: Statement
    else_branch: Optional[Statement] = None


@dataclass(frozen=True)
class Function(Expression):
    params: Tuple[str, ...]
    body: Statement


@dataclass(frozen=True)
class Invoke(Expression):
    callee: Expression
    args: Tuple[Expression, ...] = ()


@dataclass(frozen=True)
class OperatorExpr(Expression):
    left: Expression
    right: Expression
    op: str


@dataclass(frozen=True)
class NegateExpr(Expression):
    value: Expression


@dataclass(frozen=True)
class LiteralExpr(Expression):
    value: Any


@dataclass(frozen=True)
class IdentifierExpr(Expression):
    name: str


@dataclass(frozen=True)
class GroupExpr(Expression):
    inner: Expression


# =================================================================
# Scopes
# =================================================================

class Scope:
    """A Klex lookup table chained to a parent for upward resolution.

    The parent link is used for lookup only. A scope created for a function
    call is tagged as a function boundary and its parent is the closure's
    defining scope, not the caller's.
    """
    def __init__(self, parent: Optional['Scope'] = None, function_boundary: bool = False):
        self.bindings: Dict[str, Any] = {}
        self.parent = parent
        self.function_boundary = function_boundary

    def __setitem__(self, key: str, value: Any):
        """Defines `key` in this scope, ignoring the chain."""
        if not isinstance(key, str):
            raise TypeError(f"Scope key must be a str, not {type(key)}")
        self.bindings[key] = value

    def __getitem__(self, key: str) -> Any:
        owner = self.find_owner(key)
        if owner is None:
            raise KeyError(f"'{key}'")
        return owner.bindings[key]

    def __contains__(self, key: Any) -> bool:
        return isinstance(key, str) and self.find_owner(key) is not None

    def find_owner(self, key: str) -> Optional['Scope']:
        """Finds the nearest scope in the chain that defines `key`."""
        scope = self
        while scope is not None:
            if key in scope.bindings:
                return scope
            scope = scope.parent
        return None

    def get(self, key: str, default: Any = None) -> Any:
        owner = self.find_owner(key)
        if owner is None:
            return default
        return owner.bindings[key]

    def lookup(self, name: str, pos: Optional[int] = None) -> Any:
        """Fallback-get: resolves `name` through the chain or raises KlexNameError."""
        owner = self.find_owner(name)
        if owner is None:
            raise KlexNameError(name, pos)
        return owner.bindings[name]

    def assign(self, name: str, value: Any):
        """Fallback-set: writes to the nearest scope defining `name`, else defines it here."""
        owner = self.find_owner(name)
        target = owner if owner is not None else self
        target[name] = value

    def keys(self):
        """Returns a view of keys in the current scope only."""
        return self.bindings.keys()

    def visible_names(self) -> List[str]:
        """Every name resolvable from this scope, innermost first, without duplicates."""
        seen: Dict[str, None] = {}
        scope = self
        while scope is not None:
            for key in scope.bindings:
                seen.setdefault(key, None)
            scope = scope.parent
        return list(seen)

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        fn = " fn" if self.function_boundary else ""
        return f"<Scope{fn} bindings=[{keys}]{parent_id}>"


# =================================================================
# Callables
# =================================================================

class KlexCallable(ABC):
    """Abstract base class for all values that can be invoked from Klex."""
    pass


class NativeFunction(KlexCallable):
    """A host-supplied computation called as `func(scope, args)`.

    The function may return NO_RETURN to signal that it produced no value;
    the evaluator turns that into null.
    """
    def __init__(self, func: Callable[[Scope, List[Any]], Any], name: Optional[str] = None):
        self.func = func
        self.name = name or getattr(func, '__name__', None) or '<native>'

    def invoke(self, scope: Scope, args: List[Any]) -> Any:
        return self.func(scope, args)

    def __repr__(self) -> str:
        return f"<native {self.name}>"


class VoidNativeFunction(NativeFunction):
    """A native whose return value is discarded; calls to it yield no value."""
    def invoke(self, scope: Scope, args: List[Any]) -> Any:
        self.func(scope, args)
        return NO_RETURN


class KlexFunction(KlexCallable):
    """Represents a function defined in Klex with `function(...)`.

    This is a closure: it bundles the parameter names, the unevaluated body
    and the scope that was active where the function literal was evaluated.
    That scope is shared, not copied, by every invocation.
    """
    def __init__(self, params: Tuple[str, ...], body: Statement, closure: Scope):
        self.params = tuple(params)
        self.body = body
        self.closure = closure

    def __repr__(self) -> str:
        return f"<function({', '.join(self.params)})>"
