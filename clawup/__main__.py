"""Allow running as ``python -m clawup``."""

from clawup.main import cli

if __name__ == "__main__":
    cli()
