"""
Sandbox Application Layer

Key Components:
- cli.py: Entry point, logging and Sentry set-up
- config.py: Configuration management using Pydantic settings
- metrics.py: Metrics interface with Telegraf and no-op backends
- tasks.py: Background tasks for self pairing approval and credential sync
- supervisor.py: Runs the background tasks next to the gateway process
"""
