"""CLI entry point for the domain monitor app.

All command logic lives in the cli subpackage.
"""

from domain_watch.apps.domain_monitor.cli import app

__all__ = ["app", "main"]


def main() -> None:
    """Run the domain monitor CLI application."""
    app()


if __name__ == "__main__":
    main()
