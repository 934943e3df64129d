import pytest

from klex import run, parse_to_tree, highlight, highlight_html, ScriptRunner, NativeFunction
from klex.klex_datatypes import CodeScope, Assignment, LiteralExpr, ParseFailure, LexFailure, ArityError
from klex.klex_runtime import line_col, ExecutionResult


def assert_ok(res, expected=None):
    assert res.status == "success", f"expected success, got {res}"
    if expected is not None:
        assert res.value == expected, f"expected {expected!r}, got {res.value!r}"


def assert_error(res, contains: str):
    assert res.status == "error", f"expected error, got {res}"
    assert contains in (res.error_message or ""), res.error_message


def effects(res, topic):
    return [e['message'] for e in res.side_effects if e.get('topics') == [topic]]


# --- run ---

@pytest.mark.parametrize("src, expected", [
    ("1 + 2", 3.0),
    ('"a" + 1', "a1"),
    ("x = 5 return x", 5),
    ('greet = function(v) { return "Hi " + v } greet("Bob")', "Hi Bob"),
    ("if (0) { return 1 } else { return 2 }", 1),
    ("10 - 2 - 3", 11.0),
])
def test_run_programs(src, expected):
    assert_ok(run(src), expected)


def test_run_closure_shares_outer_binding():
    src = """
    total = 0
    add = function(n) { total = total + n }
    add(2) add(3)
    return total
    """
    assert_ok(run(src), 5.0)


def test_run_with_initializer():
    def init(scope):
        scope["answer"] = 42
        scope["twice"] = NativeFunction(lambda s, args: args[0] * 2, "twice")

    assert_ok(run("answer", initializer=init), 42)
    assert_ok(run("twice(answer)", initializer=init), 84)


def test_run_is_deterministic():
    src = 'f = function(x) { print(x) return x * 2 } f(4)'
    first, second = run(src), run(src)
    assert first.value == second.value == 8.0
    assert first.side_effects == second.side_effects


def test_run_null_result():
    res = run("x = 1")
    assert_ok(res)
    assert res.value is None


# --- Builtins ---

def test_print_emits_stdout_side_effects():
    res = run('print("hi") print() print(1 + 2) print(null) print(true)')
    assert_ok(res)
    assert effects(res, 'stdout') == ["hi", "", "3", "", "true"]
    assert res.value is None


def test_print_available_debug_lists_visible_names():
    src = "x = 1 f = function(a) { printAvailableDebug() } f(2)"
    res = run(src)
    assert_ok(res)
    assert effects(res, 'debug') == ["a, f, print, printAvailableDebug, x"]


def test_builtins_can_be_disabled():
    res = run('print("x")', load_builtins=False)
    assert_error(res, "NameError: 'print' is not defined")


# --- Errors ---

def test_runtime_error_reports_kind_and_location():
    res = run("x = 1\ny = x + null")
    assert_error(res, "TypeError: Operator '+' is not defined for number and null")
    assert res.error_token == {'line': 2, 'col': 5, 'pos': 10}
    assert isinstance(res.error, Exception)
    # The formatted error is also emitted as a stderr side effect.
    assert effects(res, 'stderr') == [res.error_message]


def test_error_includes_klex_stacktrace():
    src = "g = function(x) { return x + null } f = function(y) { return g(y) } f(1)"
    res = run(src)
    assert_error(res, "TypeError")
    assert "Klex stacktrace: (f 1) (g 1)" in res.error_message


def test_arity_error():
    res = run("f = function(a) { return a } f(1, 2)")
    assert_error(res, "ArityError:")
    assert isinstance(res.error, ArityError)


def test_name_error():
    assert_error(run("return missing"), "NameError: 'missing' is not defined")


def test_not_a_function():
    assert_error(run('s = "text" s()'), 'TypeError: Value "text" is not a function.')


def test_parse_failure_via_run():
    res = run("x = 1\n}")
    assert_error(res, "ParseFailure: Unexpected '}'")
    assert isinstance(res.error, ParseFailure)
    assert res.error_token['line'] == 2
    assert res.error_token['col'] == 1


def test_deeply_nested_program_via_run():
    res = run(" + ".join(["1"] * 500))
    assert_error(res, "ParseFailure: Expression nested too deeply")
    assert isinstance(res.error, ParseFailure)


def test_huge_integer_literals_compute_as_floats():
    huge = "1" + "0" * 400
    assert_ok(run(huge + " + 1"), float("inf"))
    assert_ok(run(huge + " < 1"), False)
    assert_ok(run("x = " + huge + " + 1 return x"), float("inf"))


def test_lex_failure_via_run():
    res = run('x = "abc')
    assert_error(res, "LexFailure:")
    assert isinstance(res.error, LexFailure)
    assert res.error_token['col'] == 5


def test_format_error_shows_source_context():
    res = run("a = 1\nb = a + null\nc = 3")
    text = res.format_error()
    assert text.startswith("Error on line 2, col 5: TypeError")
    assert "> 2 | b = a + null" in text
    assert "^" in text


def test_format_error_on_success_is_empty():
    assert run("1").format_error() == ""


def test_line_col():
    assert line_col("ab\ncd", 0) == (1, 1)
    assert line_col("ab\ncd", 4) == (2, 2)
    assert line_col("", 0) == (1, 1)


# --- parse_to_tree ---

def test_parse_to_tree_success():
    res = parse_to_tree("x = 1")
    assert_ok(res)
    assert res.value == CodeScope((Assignment('x', LiteralExpr(1)),))


def test_parse_to_tree_failure_does_not_evaluate():
    res = parse_to_tree("f(x) + 1")
    assert_error(res, "ParseFailure")
    # No evaluation, so no stderr side effect.
    assert res.side_effects == []


def test_parse_to_tree_tolerates_undefined_names():
    assert_ok(parse_to_tree("return undefinedThing"))


# --- ScriptRunner ---

def test_script_runner_keeps_globals_between_scripts():
    runner = ScriptRunner()
    assert_ok(runner.handle_script("x = 41"))
    assert_ok(runner.handle_script("x + 1"), 42.0)


def test_script_runner_clears_side_effects_per_script():
    runner = ScriptRunner()
    first = runner.handle_script('print("one")')
    second = runner.handle_script('print("two")')
    assert effects(first, 'stdout') == ["one"]
    assert effects(second, 'stdout') == ["two"]


def test_script_runner_recovers_after_error():
    runner = ScriptRunner()
    assert_error(runner.handle_script("boom()"), "NameError")
    assert runner.evaluator.call_stack == []
    assert_ok(runner.handle_script("1 + 1"), 2.0)


def test_globals_do_not_leak_into_root_scope():
    runner = ScriptRunner()
    runner.handle_script("x = 1")
    assert "x" in runner.global_scope
    assert "x" not in runner.root_scope
    assert "print" in runner.root_scope


def test_execution_result_ok_property():
    assert ExecutionResult(status='success').ok
    assert not ExecutionResult(status='error').ok


# --- Highlighting ---

def test_highlight_spans_cover_source():
    src = 'if (x) { return "s" } // done\n@'
    spans = highlight(src)
    assert "".join(text for text, _ in spans) == src
    colors = dict(spans)
    assert colors['if'] == "#F86700"
    assert colors['return'] == "#F86700"
    assert colors['x'] == "#DDD"
    assert colors['"s"'] == "#00FF00"
    assert colors['// done'] == "#AAA"
    assert colors['@'] == "#F00"
    assert colors['('] is None


def test_highlight_never_raises():
    spans = highlight('x = 1e + "open')
    assert "".join(text for text, _ in spans) == 'x = 1e + "open'
    assert ("1e", "#F00") in spans


def test_highlight_html():
    html = highlight_html('s = "<a>" // & more')
    assert html == (
        '<span style="color: #DDD;">s</span> = '
        '<span style="color: #00FF00;">"&lt;a&gt;"</span> '
        '<span style="color: #AAA;">// &amp; more</span>'
    )
