"""
Contracts
=========

Immutable types shared across layers. No behavior beyond construction,
parsing and serialization.
"""
