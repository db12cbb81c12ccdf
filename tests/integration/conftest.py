"""Integration test fixtures.

Applies the bundled schema against an ephemeral PostgreSQL database
provided by pytest-postgresql, and writes a small Wahapedia-shaped CSV
dataset to disk for population runs.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

from wh40k_etl.populate import initialize_schema

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture: fresh tables per test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (connection, dsn) with the schema applied.

    The connection is in autocommit mode, as the CLI opens it; every
    loader step manages its own transaction.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        initialize_schema(conn)
        yield conn, dsn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Dataset fixture
# ---------------------------------------------------------------------------

# Deliberately dirty in places: unknown factions and datasheets, dash
# sentinels, "TRUE"/"false" flags, leading-zero ids, CRLF endings and a BOM.
DATASET: dict[str, str] = {
    "Factions.csv": (
        "\ufeffid|name|link|\r\n"
        "SM|Space Marines|https://wahapedia.example/factions/space-marines|\r\n"
        "TAU|T’au Empire|https://wahapedia.example/factions/tau-empire|\r\n"
    ),
    "Source.csv": (
        "id|name|type|edition|version|errata_date|errata_link|\n"
        "000000001|Codex: Space Marines|Codex|10th|1.2|2024-03-01||\n"
    ),
    "Abilities.csv": (
        "id|name|legend|faction_id|description|\n"
        "000000100|Oath of Moment||SM|Select one enemy unit.|\n"
        "000000101|Deep Strike|||Set up in Reserves.|\n"
        "000000102|Ghost Ability||XY|Should be skipped.|\n"
    ),
    "Datasheets.csv": (
        "id|name|faction_id|source_id|legend|role|loadout|transport|virtual|"
        "leader_head|leader_footer|damaged_w|damaged_description|link|\n"
        "000000001|Captain|SM|000000001||Characters|Master-crafted bolt rifle.||false|"
        "This model can be attached to:||||https://wahapedia.example/captain|\n"
        "000000002|Intercessor Squad|SM|000000001||Battleline|Bolt rifle.||FALSE|"
        "||1-3|Subtract 1 from Hit rolls.||\n"
        "000000003|Orphan Unit|XY|||Other|||TRUE|||||\n"
    ),
    "Datasheets_models.csv": (
        "datasheet_id|line|name|M|T|Sv|inv_sv|inv_sv_descr|W|Ld|OC|base_size|base_size_descr|\n"
        '000000001|1|Captain|6"|4|3+|4+||5|6+|1|40mm||\n'
        '000000002|1|Intercessor|6"|4|3+|-||2|6+|2|32mm||\n'
        '000000003|1|Orphan|6"|4|3+|-||2|6+|2|32mm||\n'
    ),
    "Datasheets_models_cost.csv": (
        "datasheet_id|line|description|cost|\n"
        "000000001|1|1 model|80|\n"
        "000000002|1|5 models|80|\n"
    ),
    "Datasheets_unit_composition.csv": (
        "datasheet_id|line|description|\n"
        "000000002|1|1 Intercessor Sergeant|\n"
        "000000002|2|4 Intercessors|\n"
    ),
    "Datasheets_wargear.csv": (
        "datasheet_id|line|line_in_wargear|dice|name|description|range|type|A|BS_WS|S|AP|D|\n"
        '000000002|1|1||Bolt rifle|<span class="kwb">ASSAULT</span>|24"|Ranged|2|3+|4|-1|1|\n'
        "000000002|2|1||Close combat weapon||Melee|Melee|3|3+|4|0|1|\n"
    ),
    "Datasheets_options.csv": (
        "datasheet_id|line|button|description|\n"
        "000000002|1|•|The Sergeant can be equipped with a power fist.|\n"
    ),
    "Datasheets_abilities.csv": (
        "datasheet_id|line|ability_id|model|name|description|type|parameter|\n"
        "000000001|1|000000100||||Faction||\n"
        "000000002|1||Intercessor|Objective Secured|Sticky objectives.|Datasheet||\n"
        "000000001|2|000000999||||Core||\n"
    ),
    "Datasheets_keywords.csv": (
        "datasheet_id|keyword|model|is_faction_keyword|\n"
        "000000001|Infantry||false|\n"
        "000000001|Adeptus Astartes||true|\n"
        "000000002|Battleline||false|\n"
    ),
    "Datasheets_leader.csv": (
        "leader_id|attached_id|\n"
        "000000001|000000002|\n"
        "000000001|000000003|\n"
    ),
    "Stratagems.csv": (
        "faction_id|name|id|type|cp_cost|legend|turn|phase|detachment|description|\n"
        "SM|Armour of Contempt|000000200|Battle Tactic|1||Either|Shooting|Gladius Task Force|Worsen AP.|\n"
        "SM|Storm of Fire|000000201|Battle Tactic|1||Your turn|Shooting|Gladius Task Force|Ignores cover.|\n"
        "TAU|Photon Grenades|000000202|Wargear|1||Opponent|Charge|Kauyon|Subtract 2.|\n"
        "SM|Core Stratagem|000000203|Core|1||Either|Any||No detachment.|\n"
    ),
    "Enhancements.csv": (
        "faction_id|id|name|cost|detachment|legend|description|\n"
        "SM|000000300|Artificer Armour|10|Gladius Task Force||2+ save.|\n"
    ),
    "Detachment_abilities.csv": (
        "id|faction_id|name|legend|description|detachment|\n"
        "000000400|SM|Combat Doctrines||Pick a doctrine.|Gladius Task Force|\n"
        "000000401|XY|Lost Rule||No faction.|Ghost Host|\n"
    ),
    "Datasheets_stratagems.csv": (
        "datasheet_id|stratagem_id|\n"
        "000000001|000000200|\n"
        "000000002|000000201|\n"
        "000000001|000000999|\n"
    ),
    "Datasheets_enhancements.csv": (
        "datasheet_id|enhancement_id|\n"
        "000000001|000000300|\n"
    ),
    "Datasheets_detachment_abilities.csv": (
        "datasheet_id|detachment_ability_id|\n"
        "000000001|000000400|\n"
        "000000002|000000400|\n"
    ),
}


def write_dataset(data_dir: Path) -> Path:
    data_dir.mkdir(parents=True, exist_ok=True)
    for name, body in DATASET.items():
        (data_dir / name).write_text(body, encoding="utf-8")
    return data_dir


@pytest.fixture
def dataset_dir(tmp_path):
    return write_dataset(tmp_path / "data")
