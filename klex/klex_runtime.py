"""
Host-facing entry points for Klex: ScriptRunner, ExecutionResult, the
default builtins and the parse / run / highlight helpers.
"""

import html
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from klex.klex_datatypes import KlexError, CodeScope, Scope, NativeFunction, VoidNativeFunction
from klex.klex_interpreter import Evaluator
from klex.klex_parser import parse_tokens
from klex.klex_tokenizer import tokenize

# ===================================================================
# 1. Host binding
# ===================================================================


def klex_api_method(func):
    """A decorator to explicitly mark host methods as callable from Klex."""
    func._is_klex_api = True
    return func


def klex_name(py_name: str) -> str:
    """Maps a Python method name to its Klex name: '_print_available_debug' -> 'printAvailableDebug'."""
    first, *rest = py_name.lstrip('_').split('_')
    return first + ''.join(part[:1].upper() + part[1:] for part in rest)


def _adapt_host_method(method: Callable) -> Callable[[Scope, List[Any]], Any]:
    def native(scope: Scope, args: List[Any]) -> Any:
        return method(*args)
    native.__name__ = getattr(method, '__name__', 'native')
    return native


class Builtins:
    """Python implementations of the functions every runner installs.

    Each method takes the calling scope and the evaluated argument list.
    """
    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator

    def _print(self, scope: Scope, args: List[Any]):
        value = args[0] if args else None
        text = "" if value is None else self.evaluator.printer.to_text(value)
        self.evaluator.emit('stdout', text)

    def _print_available_debug(self, scope: Scope, args: List[Any]):
        names = sorted(scope.visible_names())
        self.evaluator.emit('debug', ", ".join(names))


# ===================================================================
# 2. Script Execution
# ===================================================================

ErrorToken = Dict[str, Any]


def line_col(source: str, pos: int) -> Tuple[int, int]:
    """1-based line and column of character offset `pos`."""
    pos = max(0, min(pos, len(source)))
    line = source.count("\n", 0, pos) + 1
    col = pos - (source.rfind("\n", 0, pos) + 1) + 1
    return line, col


def _source_context(source: str, line: int, col: Optional[int], radius: int = 2) -> str:
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        ln = str(i).rjust(width)
        out.append(f"{prefix} {ln} | {lines[i - 1]}")
        if i == line and col is not None:
            caret = " " * max(col - 1, 0)
            out.append(f"  {' ' * width} | {caret}^")
    return "\n".join(out)


def _error_token(source: str, pos: Optional[int]) -> Optional[ErrorToken]:
    if pos is None:
        return None
    line, col = line_col(source, pos)
    return {'line': line, 'col': col, 'pos': pos}


@dataclass
class ExecutionResult:
    """The structured result of parsing or running a script."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[ErrorToken] = None
    error: Optional[KlexError] = None
    side_effects: List[Dict] = field(default_factory=list)
    source: Optional[str] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.status == 'success'

    def format_error(self) -> str:
        """Formats an error message with line, column and a source excerpt if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            msg = f"Error on line {line}, col {col}: {msg}"
            if self.source:
                context = _source_context(self.source, line, col)
                if context:
                    msg = f"{msg}\n{context}"
        return msg


class ScriptRunner:
    """Parses and executes Klex code against a persistent root scope.

    The root scope holds builtins, bound host methods and whatever the
    `initializer` installs. Top-level program statements run in a child of
    the root scope that lives as long as the runner, so consecutive
    `handle_script` calls (a REPL session) see each other's variables.
    """

    def __init__(self, host_object: Optional[Any] = None,
                 initializer: Optional[Callable[[Scope], None]] = None,
                 load_builtins: bool = True):
        self.host_object = host_object
        self.evaluator = Evaluator()
        self.root_scope = Scope()

        if load_builtins:
            builtins = Builtins(self.evaluator)
            for name, member in inspect.getmembers(builtins):
                if name.startswith('_') and not name.startswith('__') and callable(member):
                    klex_fn_name = klex_name(name)
                    self.root_scope[klex_fn_name] = VoidNativeFunction(member, klex_fn_name)

        self._bind_host_api_methods()

        if initializer is not None:
            initializer(self.root_scope)

        self.global_scope = Scope(parent=self.root_scope)

    def _bind_host_api_methods(self):
        """Bind @klex_api_method methods of the host into the root scope (camelCase)."""
        host = self.host_object
        if host is None:
            return
        for name, member in inspect.getmembers(host):
            if not callable(member):
                continue
            is_api = getattr(member, "_is_klex_api", False)
            if not is_api:
                func = getattr(member, "__func__", None)
                if func is not None:
                    is_api = getattr(func, "_is_klex_api", False)
            if not is_api:
                continue
            klex_fn_name = klex_name(name)
            self.root_scope[klex_fn_name] = NativeFunction(_adapt_host_method(member), klex_fn_name)

    def _format_stacktrace(self) -> str:
        stack = self.evaluator.call_stack
        if not stack:
            return ""
        pf = self.evaluator.printer.pformat
        frames = []
        for frame in stack:
            args_s = " ".join(pf(a) for a in frame.get('args') or [])
            name = frame.get('name') or '<call>'
            frames.append(f"({name} {args_s})" if args_s else f"({name})")
        return "Klex stacktrace: " + " ".join(frames)

    def _error_result(self, e: KlexError, source: str) -> ExecutionResult:
        pos = e.pos
        if pos is None:
            pos = getattr(self.evaluator.current_node, 'pos', None)
        msg = str(e)
        st = self._format_stacktrace()
        if st:
            msg += "\n" + st
        self.evaluator.emit('stderr', msg)
        return ExecutionResult(
            status='error',
            error_message=msg,
            error_token=_error_token(source, pos),
            error=e,
            side_effects=list(self.evaluator.side_effects),
            source=source,
        )

    def parse(self, source_code: str) -> CodeScope:
        """Tokenizes and parses; raises LexFailure or ParseFailure."""
        return parse_tokens(tokenize(source_code))

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        self.evaluator.side_effects.clear()
        self.evaluator.call_stack.clear()
        self.evaluator.current_node = None
        try:
            program = self.parse(source_code)
            value = self.evaluator.run_program(program, self.global_scope)
        except KlexError as e:
            return self._error_result(e, source_code)
        return ExecutionResult(
            status='success',
            value=value,
            side_effects=list(self.evaluator.side_effects),
            source=source_code,
        )


# ===================================================================
# 3. Module-level entry points
# ===================================================================

def parse_to_tree(source_code: str) -> ExecutionResult:
    """Tokenizes and parses `source_code`; on success `value` is the root CodeScope."""
    try:
        tree = parse_tokens(tokenize(source_code))
    except KlexError as e:
        return ExecutionResult(
            status='error',
            error_message=str(e),
            error_token=_error_token(source_code, e.pos),
            error=e,
            source=source_code,
        )
    return ExecutionResult(status='success', value=tree, source=source_code)


def run(source_code: str, initializer: Optional[Callable[[Scope], None]] = None,
        host_object: Optional[Any] = None, load_builtins: bool = True) -> ExecutionResult:
    """Parses and runs `source_code` in a fresh root scope prepared by `initializer`."""
    runner = ScriptRunner(host_object=host_object, initializer=initializer, load_builtins=load_builtins)
    return runner.handle_script(source_code)


def highlight(source_code: str) -> List[Tuple[str, Optional[str]]]:
    """Splits `source_code` into (text, color) spans. Never raises."""
    return [(tok.text, tok.color) for tok in tokenize(source_code, tolerant=True)]


def highlight_html(source_code: str) -> str:
    """Renders `source_code` as HTML with a colored <span> per highlighted token."""
    parts = []
    for text, color in highlight(source_code):
        escaped = html.escape(text, quote=False)
        if color is None:
            parts.append(escaped)
        else:
            parts.append(f'<span style="color: {color};">{escaped}</span>')
    return "".join(parts)
