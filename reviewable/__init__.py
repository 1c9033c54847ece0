"""
Reviewable: rating aggregation and idempotent-review engine.

Domain objects registered as reviewable targets can be rated and reviewed by
registered entities (users, accounts, ...) or, when a type allows it, by
anonymous IP addresses. Each reviewer holds at most one review per target;
aggregate statistics (count, average) stay consistent with the review set and
are optionally cached on the target row.

Entry points::

    from reviewable.engine.engine import ReviewEngine
    from reviewable.registry import build_registry
"""

__version__ = "0.1.0"
