"""CLI entry point for renzo.cli module.

Enables execution via: python -m renzo.cli (runs sync_jobs)
"""

from renzo.cli.sync_jobs import main

if __name__ == "__main__":
    raise SystemExit(main())
