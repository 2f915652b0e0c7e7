"""
Device Pairing

Approval of pending device pairing requests, used both by the self-approval task at
container start (see app/tasks.py) and by the manual approval tool:

    python -m openclaw.sandbox.pairing [requestId]
"""
