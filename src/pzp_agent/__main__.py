"""Console entry point for the pzp-agent CLI."""

from pzp_agent.cli import app


def main() -> None:
    """Invoke the pzp-agent Typer application."""

    app()


if __name__ == "__main__":
    main()
