"""DuckDB schema setup and prediction row persistence."""

from predbites.storage import get_connection, init_schema


def test_init_schema_creates_tables_and_is_idempotent(temp_db_path):
    conn = get_connection(temp_db_path)
    try:
        init_schema(conn)
        init_schema(conn)
        tables = {r[0] for r in conn.execute("SELECT table_name FROM information_schema.tables").fetchall()}
        assert {"predictions", "prediction_outcomes", "prediction_stakes"} <= tables
    finally:
        conn.close()


def test_create_writes_each_outcome_once(service, db, make_prediction):
    view = make_prediction(outcomes=("Home", "Draw", "Away"))
    with db.cursor() as conn:
        rows = conn.execute(
            "SELECT id, label FROM prediction_outcomes WHERE prediction_id = ? ORDER BY position",
            [view.id],
        ).fetchall()
    assert [label for _, label in rows] == ["Home", "Draw", "Away"]
    assert [oid for oid, _ in rows] == [o.id for o in view.outcomes]
