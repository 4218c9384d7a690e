"""
Core modules for AI Quota Gate.

This package contains the usage ledger, rate gate, error classifier and
request queue that sit between callers and the upstream API.
"""
