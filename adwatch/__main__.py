"""Run the alert engine: ``python -m adwatch <command>``."""

from adwatch.services.alert_engine import cli

if __name__ == "__main__":
    cli()
