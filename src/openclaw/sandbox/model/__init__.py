"""
State Models

This package defines the records persisted in the gateway's state directory. They are
Pydantic models serialized as camelCase JSON documents, so the files stay readable by the
gateway process that consumes them.

Key Models:
- base.py: Shared model configuration (camelCase aliases, unknown keys preserved)
- pairing.py: Pending pairing requests, paired devices and their per-role tokens
- auth_profile.py: OAuth profiles and the versioned auth profile store

The documents relate as follows:
- PendingRequest: An unconfirmed device asking to be paired, keyed by request id
- PairedDevice: A confirmed device, keyed by device id, holding one DeviceToken per role
- AuthStore: A versioned mapping of profile id to AuthProfile

Optional fields that are unset are omitted from written documents rather than stored as
null, and keys this package does not know about are carried through untouched.
"""
