"""Run script.

Why it exists:
- Lets `python -m main` work from inside `src/` during development.
- Keeps a plain entry point next to the `isoseg` console script.
"""

from __future__ import annotations

import sys

# Windows terminals default to cp1252; Rich output uses check marks.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from cli.main import run


def main() -> None:
    run()


if __name__ == "__main__":
    main()
