"""CLI entry point for agentterm."""

import sys


def main() -> int:
    """Main entry point for the agentterm CLI."""
    from agentterm.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
