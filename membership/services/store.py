"""Atomic upsert on a conflict key.

Builds INSERT ... ON CONFLICT (<key>) DO UPDATE with the dialect-specific
insert construct, so concurrent writers converge on last-write-wins for
that key without a read-modify-write. PostgreSQL in production, SQLite
in tests; both support the same clause.
"""

from sqlalchemy.dialects import postgresql, sqlite

from membership.extensions import db

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert(model, values, conflict_key, update_columns=None):
    """Insert `values` into `model`'s table, or overwrite on `conflict_key`.

    Args:
        model: mapped class whose table has a unique constraint on conflict_key
        values: column -> value for the row
        conflict_key: column name (or tuple of names) the upsert keys on
        update_columns: columns to overwrite on conflict; defaults to every
            column in `values` except the key

    Does not commit; the caller owns the transaction.
    """
    if isinstance(conflict_key, str):
        conflict_key = (conflict_key,)

    dialect = db.session.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"upsert is not supported on {dialect}")

    # Python-side column defaults (uuid ids) are applied to the INSERT branch.
    stmt = insert(model).values(**values)
    if update_columns is None:
        update_columns = [c for c in values if c not in conflict_key]
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_key),
        set_={c: stmt.excluded[c] for c in update_columns},
    )
    db.session.execute(stmt)
