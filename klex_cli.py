import sys
from pathlib import Path

from klex.klex_runtime import ScriptRunner, highlight_html
from klex.klex_printer import Printer


def _print_side_effects(result):
    for effect in result.side_effects:
        if effect.get('topics') == ['stdout']:
            print(effect.get('message', ''))
        elif effect.get('topics') == ['debug']:
            print(effect.get('message', ''), file=sys.stderr)


def _read_source(file_path: str) -> str:
    try:
        return Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)


def run_script_file(file_path: str):
    """Run a Klex script file non-interactively and exit with appropriate status."""
    runner = ScriptRunner()
    printer = Printer()
    result = runner.handle_script(_read_source(file_path))
    _print_side_effects(result)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)
    if result.value is not None:
        print(printer.pformat(result.value))


def repl():
    print("Klex REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner()
    printer = Printer()

    while True:
        try:
            line = input(">> ").strip()
        except EOFError:
            print("\nExiting.")
            break
        if not line:
            continue
        if line == "exit":
            break

        result = runner.handle_script(line)
        _print_side_effects(result)
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            continue
        if result.value is not None:
            print(printer.pformat(result.value))


def main(argv=None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    args = sys.argv[1:] if argv is None else argv
    if len(args) == 2 and args[0] == "--highlight":
        print(highlight_html(_read_source(args[1])))
        return
    if args and not args[0].startswith("-"):
        run_script_file(args[0])
        return
    repl()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
