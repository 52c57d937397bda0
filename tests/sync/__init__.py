"""
Tests for incremental synchronization: lifecycle events, per-document
locking and the synchronizer applying events to the index.
"""
