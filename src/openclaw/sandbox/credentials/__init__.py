"""
Credential Sync

Mirrors externally managed credentials into the gateway's auth profile store. Only the
Codex CLI's OAuth credentials are supported.
"""
