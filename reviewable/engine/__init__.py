"""
Review engine.

  engine/scale.py   : Scale construction and validation.
  engine/resolver.py: Reviewer identity resolution (entity vs anonymous IP).
  engine/cache.py   : Cached aggregate fields on target rows.
  engine/engine.py  : ``ReviewEngine``: submit / retract / query.

The review store itself lives in ``db/repositories/review_repo.py``.
"""
