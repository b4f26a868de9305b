"""
v4 -> v5: referential integrity.

Columns are unchanged, so every table is copied as is. The new foreign keys and
the (bookmarkId, siblingIdx) uniqueness are enforced by the final integrity
checks: a v4 file with orphaned rows or duplicate sibling indices is refused.
"""
from db.migrations.engine import MigrationStep

STEP = MigrationStep(from_version=4, to_version=5)
