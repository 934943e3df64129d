from klex.klex_runtime import (
    ScriptRunner, ExecutionResult, klex_api_method,
    parse_to_tree, run, highlight, highlight_html,
)
from klex.klex_datatypes import (
    Scope, NativeFunction, VoidNativeFunction, KlexFunction,
    KlexError, LexFailure, ParseFailure, ArityError, KlexTypeError, KlexNameError,
)
from klex.klex_tokenizer import Token, tokenize

__all__ = [
    "ScriptRunner", "ExecutionResult", "klex_api_method",
    "parse_to_tree", "run", "highlight", "highlight_html",
    "Scope", "NativeFunction", "VoidNativeFunction", "KlexFunction",
    "KlexError", "LexFailure", "ParseFailure", "ArityError", "KlexTypeError", "KlexNameError",
    "Token", "tokenize",
]
