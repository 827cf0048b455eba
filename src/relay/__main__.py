"""Entry point for running the Relay retry sweeper as a module.

Usage:
    python -m relay

Configure with RELAY_* environment variables, e.g. RELAY_DATABASE_URL.
"""

from .worker import main

if __name__ == "__main__":
    main()
