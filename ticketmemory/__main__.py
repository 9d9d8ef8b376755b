"""
Entry point for running ticketmemory as a module.

Usage:
    python -m ticketmemory load
    python -m ticketmemory save < input.json
    python -m ticketmemory query blockers

This is equivalent to the ``ticketmemory`` script; ``query`` forwards to
``ticketmemory-query``.
"""

import sys


def main() -> int:
    """Main entry point with subcommand support."""
    if len(sys.argv) > 1 and sys.argv[1].lower() == "query":
        from ticketmemory.cli.query_cli import main as query_main
        return query_main(sys.argv[2:])

    from ticketmemory.cli.memory_cli import main as memory_main
    return memory_main(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
