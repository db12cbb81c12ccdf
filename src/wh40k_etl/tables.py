"""wh40k_etl.tables

Per-table load descriptors: which CSV feeds each table, the ordered
destination columns with their converters, header renames, conflict keys
used for insert-or-replace, and the static child-column -> parent-table
map used for foreign-key pre-validation.

Every persisted column must be declared here. validate_registry() is run
before any table is touched so that a missing or inconsistent entry stops
the run instead of silently skipping a table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from wh40k_etl.normalize import dash_to_none, text, to_bool_int, to_int
from wh40k_etl.shared import ConfigurationError

Converter = Callable[[Any], Any]

MARKER_FILE = "Last_update.csv"
DETACHMENTS_TABLE = "detachments"

# Raw CSV columns carrying the (faction, detachment name) pair on
# detachment-scoped sources.
DETACHMENT_FACTION_COL = "faction_id"
DETACHMENT_NAME_COL = "detachment"


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnSpec:
    name: str
    convert: Converter = text
    nullable: bool = True


@dataclass(frozen=True)
class TableSpec:
    name: str
    csv_file: str
    columns: tuple[ColumnSpec, ...]
    conflict_key: tuple[str, ...] = ("id",)
    header_map: dict[str, str] = field(default_factory=dict)
    foreign_keys: dict[str, str] = field(default_factory=dict)
    detachment_scoped: bool = False

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def insert_columns(self) -> list[str]:
        """Columns written by the loader, in statement order."""
        if self.detachment_scoped:
            return ["detachment_id", *self.column_names]
        return self.column_names

    def column(self, name: str) -> ColumnSpec | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None


def _col(name: str, convert: Converter = text, nullable: bool = True) -> ColumnSpec:
    return ColumnSpec(name=name, convert=convert, nullable=nullable)


def _key_int(name: str) -> ColumnSpec:
    return ColumnSpec(name=name, convert=to_int, nullable=False)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_SPECS: list[TableSpec] = [
    TableSpec(
        name="factions",
        csv_file="Factions.csv",
        columns=(
            ColumnSpec("id", text, nullable=False),
            _col("name", nullable=False),
            _col("link"),
        ),
    ),
    TableSpec(
        name="sources",
        csv_file="Source.csv",
        columns=(
            _key_int("id"),
            _col("name", nullable=False),
            _col("type"),
            _col("edition"),
            _col("version"),
            _col("errata_date"),
            _col("errata_link"),
        ),
    ),
    TableSpec(
        name="abilities",
        csv_file="Abilities.csv",
        columns=(
            _key_int("id"),
            _col("faction_id"),
            _col("name", nullable=False),
            _col("legend"),
            _col("description"),
        ),
        foreign_keys={"faction_id": "factions"},
    ),
    TableSpec(
        name="datasheets",
        csv_file="Datasheets.csv",
        columns=(
            _key_int("id"),
            _col("name", nullable=False),
            _col("faction_id"),
            _col("source_id", to_int),
            _col("role"),
            _col("legend"),
            _col("loadout"),
            _col("transport"),
            _col("virtual", to_bool_int),
            _col("leader_head"),
            _col("leader_footer"),
            _col("damaged_w"),
            _col("damaged_description"),
            _col("link"),
        ),
        foreign_keys={"faction_id": "factions", "source_id": "sources"},
    ),
    TableSpec(
        name="datasheets_models",
        csv_file="Datasheets_models.csv",
        columns=(
            _key_int("datasheet_id"),
            _key_int("line"),
            _col("name", nullable=False),
            _col("M"),
            _col("T"),
            _col("Sv"),
            _col("inv_sv", dash_to_none),
            _col("inv_sv_descr"),
            _col("W"),
            _col("Ld"),
            _col("OC"),
            _col("base_size"),
            _col("base_size_descr"),
        ),
        conflict_key=("datasheet_id", "line"),
        foreign_keys={"datasheet_id": "datasheets"},
    ),
    TableSpec(
        name="datasheets_model_costs",
        csv_file="Datasheets_models_cost.csv",
        columns=(
            _key_int("datasheet_id"),
            _key_int("line"),
            _col("description"),
            _col("cost"),
        ),
        conflict_key=("datasheet_id", "line"),
        foreign_keys={"datasheet_id": "datasheets"},
    ),
    TableSpec(
        name="datasheets_unit_compositions",
        csv_file="Datasheets_unit_composition.csv",
        columns=(
            _key_int("datasheet_id"),
            _key_int("line"),
            _col("description"),
        ),
        conflict_key=("datasheet_id", "line"),
        foreign_keys={"datasheet_id": "datasheets"},
    ),
    TableSpec(
        name="datasheets_wargears",
        csv_file="Datasheets_wargear.csv",
        columns=(
            _key_int("datasheet_id"),
            _key_int("line"),
            _key_int("line_in_wargear"),
            _col("dice"),
            _col("name", nullable=False),
            _col("description"),
            _col("range"),
            _col("type"),
            _col("A"),
            _col("BS_WS"),
            _col("S"),
            _col("AP"),
            _col("D"),
        ),
        conflict_key=("datasheet_id", "line", "line_in_wargear"),
        foreign_keys={"datasheet_id": "datasheets"},
    ),
    TableSpec(
        name="datasheets_wargear_options",
        csv_file="Datasheets_options.csv",
        columns=(
            _key_int("datasheet_id"),
            _key_int("line"),
            _col("button"),
            _col("description"),
        ),
        conflict_key=("datasheet_id", "line"),
        foreign_keys={"datasheet_id": "datasheets"},
    ),
    TableSpec(
        name="datasheets_abilities",
        csv_file="Datasheets_abilities.csv",
        columns=(
            _key_int("datasheet_id"),
            _key_int("line"),
            _col("ability_id", to_int),
            _col("model"),
            _col("name"),
            _col("description"),
            _col("type"),
            _col("parameter"),
        ),
        conflict_key=("datasheet_id", "line"),
        foreign_keys={"datasheet_id": "datasheets", "ability_id": "abilities"},
    ),
    TableSpec(
        name="datasheets_keywords",
        csv_file="Datasheets_keywords.csv",
        columns=(
            _key_int("datasheet_id"),
            _col("keyword", nullable=False),
            _col("model"),
            _col("is_faction_keyword", to_bool_int),
        ),
        conflict_key=("datasheet_id", "keyword"),
        foreign_keys={"datasheet_id": "datasheets"},
    ),
    TableSpec(
        name="datasheets_leaders",
        csv_file="Datasheets_leader.csv",
        columns=(
            _key_int("leader_datasheet_id"),
            _key_int("unit_datasheet_id"),
        ),
        conflict_key=("leader_datasheet_id", "unit_datasheet_id"),
        header_map={"leader_id": "leader_datasheet_id", "attached_id": "unit_datasheet_id"},
        foreign_keys={
            "leader_datasheet_id": "datasheets",
            "unit_datasheet_id": "datasheets",
        },
    ),
    TableSpec(
        name="stratagems",
        csv_file="Stratagems.csv",
        columns=(
            _key_int("id"),
            _col("faction_id"),
            _col("name", nullable=False),
            _col("type"),
            _col("cp_cost"),
            _col("legend"),
            _col("turn"),
            _col("phase"),
            _col("description"),
        ),
        foreign_keys={"faction_id": "factions"},
        detachment_scoped=True,
    ),
    TableSpec(
        name="enhancements",
        csv_file="Enhancements.csv",
        columns=(
            _key_int("id"),
            _col("faction_id"),
            _col("name", nullable=False),
            _col("cost"),
            _col("legend"),
            _col("description"),
        ),
        foreign_keys={"faction_id": "factions"},
        detachment_scoped=True,
    ),
    TableSpec(
        name="detachments_abilities",
        csv_file="Detachment_abilities.csv",
        columns=(
            _key_int("id"),
            _col("name", nullable=False),
            _col("legend"),
            _col("description"),
        ),
        detachment_scoped=True,
    ),
    TableSpec(
        name="datasheets_stratagems",
        csv_file="Datasheets_stratagems.csv",
        columns=(_key_int("datasheet_id"), _key_int("stratagem_id")),
        conflict_key=("datasheet_id", "stratagem_id"),
        foreign_keys={"datasheet_id": "datasheets", "stratagem_id": "stratagems"},
    ),
    TableSpec(
        name="datasheets_enhancements",
        csv_file="Datasheets_enhancements.csv",
        columns=(_key_int("datasheet_id"), _key_int("enhancement_id")),
        conflict_key=("datasheet_id", "enhancement_id"),
        foreign_keys={"datasheet_id": "datasheets", "enhancement_id": "enhancements"},
    ),
    TableSpec(
        name="datasheets_detachments_abilities",
        csv_file="Datasheets_detachment_abilities.csv",
        columns=(_key_int("datasheet_id"), _key_int("detachment_ability_id")),
        conflict_key=("datasheet_id", "detachment_ability_id"),
        foreign_keys={
            "datasheet_id": "datasheets",
            "detachment_ability_id": "detachments_abilities",
        },
    ),
]

TABLES: dict[str, TableSpec] = {spec.name: spec for spec in _SPECS}

# Tables whose primary key is a single "id" column, queryable by identifier.
ID_KEYED_TABLES: frozenset[str] = frozenset(
    [name for name, spec in TABLES.items() if spec.conflict_key == ("id",)]
    + [DETACHMENTS_TABLE]
)


# ---------------------------------------------------------------------------
# Load order
# ---------------------------------------------------------------------------

INDEPENDENT_TABLES = ("factions", "sources", "abilities")
UNIT_PROFILE_TABLES = (
    "datasheets",
    "datasheets_models",
    "datasheets_model_costs",
    "datasheets_unit_compositions",
    "datasheets_wargears",
    "datasheets_wargear_options",
    "datasheets_abilities",
    "datasheets_keywords",
    "datasheets_leaders",
)
DETACHMENT_SCOPED_TABLES = ("stratagems", "enhancements", "detachments_abilities")
CROSS_LINK_TABLES = (
    "datasheets_stratagems",
    "datasheets_enhancements",
    "datasheets_detachments_abilities",
)
LOAD_ORDER = (
    INDEPENDENT_TABLES + UNIT_PROFILE_TABLES + DETACHMENT_SCOPED_TABLES + CROSS_LINK_TABLES
)

# Every file the population run downloads, in load order.
CSV_FILES: tuple[str, ...] = tuple(TABLES[name].csv_file for name in LOAD_ORDER)


# ---------------------------------------------------------------------------
# Lookup + validation
# ---------------------------------------------------------------------------

def get_table_spec(table: str) -> TableSpec:
    try:
        return TABLES[table]
    except KeyError:
        raise ConfigurationError(f"no converters defined for table {table!r}") from None


def validate_registry(tables: dict[str, TableSpec] | None = None) -> None:
    """Check the registry is complete and self-consistent.

    Raises ConfigurationError listing every problem found.
    """
    tables = TABLES if tables is None else tables
    problems: list[str] = []
    parents = set(tables) | {DETACHMENTS_TABLE}

    for name in LOAD_ORDER:
        if name not in tables:
            problems.append(f"{name}: no table spec")
    seen_files: dict[str, str] = {}

    for name, spec in tables.items():
        if name != spec.name:
            problems.append(f"{name}: registered under a different name ({spec.name})")
        if not spec.columns:
            problems.append(f"{name}: no columns")
            continue
        names = spec.column_names
        if len(set(names)) != len(names):
            problems.append(f"{name}: duplicate column names")
        for col in spec.columns:
            if not callable(col.convert):
                problems.append(f"{name}.{col.name}: converter is not callable")
        for key in spec.conflict_key:
            col = spec.column(key)
            if col is None:
                problems.append(f"{name}: conflict key column {key!r} not declared")
            elif col.nullable:
                problems.append(f"{name}: conflict key column {key!r} is nullable")
        for fk_col, parent in spec.foreign_keys.items():
            if spec.column(fk_col) is None:
                problems.append(f"{name}: foreign key column {fk_col!r} not declared")
            if parent not in parents:
                problems.append(f"{name}.{fk_col}: unknown parent table {parent!r}")
        if spec.csv_file in seen_files:
            problems.append(
                f"{name}: csv file {spec.csv_file} already feeds {seen_files[spec.csv_file]}"
            )
        seen_files[spec.csv_file] = name

    if problems:
        raise ConfigurationError("invalid table registry: " + "; ".join(problems))
