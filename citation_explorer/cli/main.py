# citation_explorer/cli/main.py

from __future__ import annotations

import typer
from citation_explorer.cli import tree_cli

app = typer.Typer(help="CLI tools for exploring incremental citation trees.")

app.add_typer(tree_cli.app, name="tree")

if __name__ == "__main__":
    app()
