"""Interactive REPL (Read-Eval-Print Loop) for the memory simulator.

The REPL creates a memory engine, wraps it in a shell, and enters the
classic loop:

    1. **Read** — display a prompt and read user input.
    2. **Eval** — pass the command to ``shell.execute()``.
    3. **Print** — display the result.
    4. **Loop** — repeat until the shell returns the exit sentinel.

The helper functions (``format_banner``, ``build_prompt``) are pure and
testable.  The ``run()`` function is the I/O entrypoint.
"""

import readline

from py_memsim.engine import MemoryEngine
from py_memsim.shell import Shell
from py_memsim.units import format_bytes

_BANNER_WIDTH = 38


def format_banner(engine: MemoryEngine) -> str:
    """Format the start-up banner describing the engine.

    Args:
        engine: The engine the REPL drives.

    Returns:
        A formatted string suitable for printing to the console.

    """
    border = "=" * _BANNER_WIDTH
    header = f"\n  {border}\n          py-memsim v0.1.0\n    A memory-manager simulator\n  {border}\n\n"
    config = engine.config
    body = (
        f"  Memory:    {format_bytes(config.total_memory)} "
        f"({format_bytes(config.os_reserved)} OS)\n"
        f"  Technique: {engine.technique}\n"
        f"  Fit:       {config.fit_policy}\n"
    )
    footer = "\nType 'help' for commands, 'exit' to quit.\n"
    return header + body + footer


def build_prompt(engine: MemoryEngine) -> str:
    """Build the prompt string showing the active technique.

    Returns:
        A prompt string like ``memsim[dynamic] $ ``, or ``memsim $ ``
        while the engine has no backing store.

    """
    if not engine.ready:
        return "memsim $ "
    return f"memsim[{engine.technique}] $ "


def _complete(shell: Shell, text: str, state: int) -> str | None:
    """Return the *state*-th command name starting with *text*."""
    matches = [name for name in shell.command_names if name.startswith(text)]
    return matches[state] if state < len(matches) else None


def run() -> None:
    """Create an engine and run the interactive REPL.

    Handles Ctrl+C and Ctrl+D gracefully.
    """
    engine = MemoryEngine()
    shell = Shell(engine=engine)

    readline.set_completer(lambda text, state: _complete(shell, text, state))
    readline.set_completer_delims(" \t")
    readline.parse_and_bind("tab: complete")

    print(format_banner(engine))  # noqa: T201

    try:
        while True:
            try:
                command = input(build_prompt(engine))
            except EOFError:
                # Ctrl+D: graceful exit
                print()  # noqa: T201
                break

            result = shell.execute(command)
            if result == Shell.EXIT_SENTINEL:
                break
            if result:
                print(result)  # noqa: T201

    except KeyboardInterrupt:
        # Ctrl+C: graceful exit
        print("\nInterrupted.")  # noqa: T201

    finally:
        print("Goodbye.")  # noqa: T201
