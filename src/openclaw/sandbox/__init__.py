"""
OpenClaw Sandbox Bootstrap

This package contains the processes that run next to the OpenClaw gateway inside its
container. The gateway refuses tool connections until a device has been paired, and it reads
model credentials from its own auth profile store; both need to be in place before the
sandbox is usable without manual intervention.

Key Components:
- store.py: Whole-document JSON persistence with atomic replacement
- model/: Pydantic models for the pairing and auth profile documents
- pairing/: The pairing approval engine and the manual approval tool
- credentials/: Codex CLI credential sync into the auth profile store
- app/: Settings, metrics, background tasks and the process supervisor

The supervisor (openclaw-sandbox) is the container's entry point: it starts the credential
sync and self-approval tasks and then runs the gateway as a child process.
"""
