"""Synchronization between the Gmail mailbox and the local store.

Modules:
- ``actions``: mutation actions shared by the network, store and callers.
- ``converters``: pure mappings between representations.
- ``refresh``: the refresh engine (full listing or history replay).
"""
