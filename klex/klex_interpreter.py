"""
The core Klex interpreter: the Evaluator and the operator table.
"""
import math
import os
import sys
from typing import Any, Callable, Dict, List, Optional

from klex.klex_datatypes import (
    NO_RETURN, Scope, Statement, Expression, CodeScope, Return, Assignment, If,
    Function, Invoke, OperatorExpr, NegateExpr, LiteralExpr, IdentifierExpr, GroupExpr,
    KlexCallable, KlexFunction, NativeFunction, ArityError, KlexTypeError
)
from klex.klex_printer import Printer, to_text


# =================================================================
# Value helpers
# =================================================================

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_truthy(value: Any) -> bool:
    """Boolean coercion used by '!', '||' and '&&': only null and false are falsy."""
    return value is not None and value is not False


def if_condition_holds(value: Any) -> bool:
    """The `if` rule: a null condition counts as false; anything but false runs the branch."""
    if value is None:
        value = False
    return value is not False


def type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, KlexCallable):
        return "function"
    return type(value).__name__


# =================================================================
# Operators
# =================================================================
# Each operator returns NotImplemented when it has no behavior for the
# operand types; the evaluator turns that into a KlexTypeError.

def _op_add(a, b):
    if isinstance(a, str) or isinstance(b, str):
        return to_text(a) + to_text(b)
    if is_number(a) and is_number(b):
        return float(a) + float(b)
    return NotImplemented


def _op_sub(a, b):
    if is_number(a) and is_number(b):
        return float(a) - float(b)
    return NotImplemented


def _op_mul(a, b):
    if is_number(a) and is_number(b):
        return float(a) * float(b)
    return NotImplemented


def _op_div(a, b):
    if is_number(a) and is_number(b):
        a, b = float(a), float(b)
        if b == 0:
            # IEEE semantics instead of ZeroDivisionError.
            if a == 0 or math.isnan(a):
                return math.nan
            return math.copysign(math.inf, a) * math.copysign(1.0, b)
        return a / b
    return NotImplemented


def _op_eq(a, b):
    if isinstance(a, KlexCallable) or isinstance(b, KlexCallable):
        return a is b
    return type(a) is type(b) and a == b


def _numeric_comparison(compare: Callable[[float, float], bool]):
    def op(a, b):
        if is_number(a) and is_number(b):
            return compare(float(a), float(b))
        return NotImplemented
    return op


def _op_or(a, b):
    return is_truthy(a) or is_truthy(b)


def _op_and(a, b):
    return is_truthy(a) and is_truthy(b)


OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    '+': _op_add,
    '-': _op_sub,
    '*': _op_mul,
    '/': _op_div,
    '==': _op_eq,
    '<': _numeric_comparison(lambda a, b: a < b),
    '>': _numeric_comparison(lambda a, b: a > b),
    '<=': _numeric_comparison(lambda a, b: a <= b),
    '>=': _numeric_comparison(lambda a, b: a >= b),
    '||': _op_or,
    '&&': _op_and,
}


def apply_operator(op: str, left: Any, right: Any) -> Any:
    return OPERATORS[op](left, right)


# =================================================================
# Evaluator
# =================================================================

class Evaluator:
    """The Klex execution engine.

    `execute` runs a statement and returns either NO_RETURN or the value of
    a `return` that is propagating outward; `evaluate` computes the value of
    an expression. Failures are raised as KlexError subclasses and abort the
    whole run.
    """
    def __init__(self):
        self.side_effects: List[Dict[str, Any]] = []
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node = None
        self.printer = Printer()

    def _push_frame(self, name, func, args, call_site_node):
        self.call_stack.append({
            'name': name,
            'func': func,
            'args': args,
            'call_site': getattr(call_site_node, 'pos', None),
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    def _dbg(self, *parts):
        if os.environ.get("KLEX_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def emit(self, topic: str, message: str):
        """Records a side effect for the host application."""
        self.side_effects.append({'topics': [topic], 'message': message})

    # --- Programs and statements ---

    def run_program(self, program: CodeScope, scope: Scope) -> Any:
        """Executes a root CodeScope's statements directly in `scope`.

        Returns the value of a `return` reaching the top level; otherwise the
        value of the last statement if it was an expression statement, else None.
        """
        completion = None
        for stmt in program.statements:
            if isinstance(stmt, Expression):
                completion = self.evaluate(stmt, scope)
                continue
            result = self.execute(stmt, scope)
            if result is not NO_RETURN:
                return result
            completion = None
        return completion

    def execute(self, stmt: Statement, scope: Scope) -> Any:
        self.current_node = stmt
        match stmt:
            case Assignment(target=target, value=value):
                scope.assign(target, self.evaluate(value, scope))
                return NO_RETURN
            case Expression():
                self.evaluate(stmt, scope)
                return NO_RETURN
            case CodeScope(statements=statements):
                block = Scope(parent=scope)
                for inner in statements:
                    result = self.execute(inner, block)
                    if result is not NO_RETURN:
                        return result
                return NO_RETURN
            case If(cond=cond, then_branch=then_branch, else_branch=else_branch):
                if if_condition_holds(self.evaluate(cond, scope)):
                    return self.execute(then_branch, scope)
                if else_branch is not None:
                    return self.execute(else_branch, scope)
                return NO_RETURN
            case Return(value=value):
                return self.evaluate(value, scope)
            case _:
                raise TypeError(f"Unknown statement node: {stmt!r}")

    # --- Expressions ---

    def evaluate(self, expr: Expression, scope: Scope) -> Any:
        self.current_node = expr
        match expr:
            case LiteralExpr(value=value):
                return value
            case IdentifierExpr(name=name):
                return scope.lookup(name, expr.pos)
            case GroupExpr(inner=inner):
                return self.evaluate(inner, scope)
            case Function(params=params, body=body):
                return KlexFunction(params, body, scope)
            case Invoke():
                return self._invoke(expr, scope)
            case NegateExpr(value=value):
                return not is_truthy(self.evaluate(value, scope))
            case OperatorExpr(left=left_node, right=right_node, op=op):
                # Both operands are always evaluated; '||' and '&&' do not short-circuit.
                left = self.evaluate(left_node, scope)
                right = self.evaluate(right_node, scope)
                result = apply_operator(op, left, right)
                if result is NotImplemented:
                    raise KlexTypeError(
                        f"Operator '{op}' is not defined for {type_name(left)} and {type_name(right)}",
                        expr.pos,
                    )
                return result
            case _:
                raise TypeError(f"Unknown expression node: {expr!r}")

    def _invoke(self, expr: Invoke, scope: Scope) -> Any:
        target = self.evaluate(expr.callee, scope)
        if not isinstance(target, KlexCallable):
            raise KlexTypeError(f"Value {self.printer.pformat(target)} is not a function.", expr.pos)
        args = [self.evaluate(arg, scope) for arg in expr.args]
        name = expr.callee.name if isinstance(expr.callee, IdentifierExpr) else '<call>'
        self._dbg("CALL", name, "argc", len(args))
        self._push_frame(name, target, args, expr)
        _ok = False
        try:
            result = self.call(target, args, scope, call_site=expr)
            _ok = True
        finally:
            if _ok:
                self._pop_frame()
        return result

    def call(self, func: KlexCallable, args: List[Any], scope: Scope, call_site: Optional[Invoke] = None) -> Any:
        """Calls a Klex callable with already-evaluated arguments."""
        pos = call_site.pos if call_site is not None else None
        if isinstance(func, NativeFunction):
            result = func.invoke(scope, args)
            return None if result is NO_RETURN else result
        if isinstance(func, KlexFunction):
            if len(args) > len(func.params):
                raise ArityError(
                    f"Attempted to invoke function({', '.join(func.params)}) with {len(args)} "
                    f"arguments but it declares {len(func.params)}.",
                    pos,
                )
            # The call scope hangs off the closure's defining scope, not the caller's.
            call_scope = Scope(parent=func.closure, function_boundary=True)
            for param, value in zip(func.params, args):
                call_scope[param] = value
            result = self.execute(func.body, call_scope)
            return None if result is NO_RETURN else result
        raise KlexTypeError(f"Value {self.printer.pformat(func)} is not a function.", pos)
