"""
Coinswap NG wallet CLI package.

Commands are registered via ``@app.command()`` decorators in the submodules,
which reference the ``app`` Typer instance defined here.
"""

from __future__ import annotations

import typer

app = typer.Typer(
    name="cs-wallet",
    help="Coinswap NG watch-only wallet sync",
    add_completion=False,
)


def main() -> None:
    """Entry point for the ``cs-wallet`` console script."""
    app()


# ---------------------------------------------------------------------------
# Import submodules to register their ``@app.command()`` decorated functions.
# These imports MUST come after ``app`` is defined above.
# ---------------------------------------------------------------------------
from cswallet.cli import sync_cmd  # noqa: E402, F401

if __name__ == "__main__":
    main()
