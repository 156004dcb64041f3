from __future__ import annotations

from chartdata_api.db import SCHEMA_VERSION, fetchone, init_db, row_to_dict


async def test_init_db_records_schema_version_once(db, settings) -> None:  # noqa: ANN001
    await init_db(settings)
    await init_db(settings)

    row = row_to_dict(await fetchone(db, "SELECT value FROM meta WHERE key = ?", ("schema_version",)))
    assert row == {"value": str(SCHEMA_VERSION)}
    count = row_to_dict(await fetchone(db, "SELECT COUNT(*) AS n FROM meta"))
    assert count == {"n": 1}
