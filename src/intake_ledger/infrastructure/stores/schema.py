"""
Table layout shared by both record stores.

Column names match the snake_case model field names so a row dict validates
straight into its record model.
"""

from dataclasses import dataclass

from intake_ledger.domain.records import RecordKind


@dataclass(frozen=True)
class TableSpec:
    """Table name and ordered columns for one record kind."""

    kind: RecordKind
    table: str
    columns: tuple[str, ...]

    @property
    def column_list(self) -> str:
        return ", ".join(self.columns)

    @property
    def has_type(self) -> bool:
        return "type" in self.columns


TABLES: dict[RecordKind, TableSpec] = {
    RecordKind.INTAKE: TableSpec(
        RecordKind.INTAKE,
        "intake_records",
        ("id", "type", "amount", "timestamp", "source", "note"),
    ),
    RecordKind.WEIGHT: TableSpec(
        RecordKind.WEIGHT,
        "weight_records",
        ("id", "weight", "timestamp", "note"),
    ),
    RecordKind.BLOOD_PRESSURE: TableSpec(
        RecordKind.BLOOD_PRESSURE,
        "blood_pressure_records",
        ("id", "systolic", "diastolic", "heart_rate", "position", "arm", "timestamp", "note"),
    ),
    RecordKind.EATING: TableSpec(
        RecordKind.EATING,
        "eating_records",
        ("id", "timestamp", "note"),
    ),
    RecordKind.URINATION: TableSpec(
        RecordKind.URINATION,
        "urination_records",
        ("id", "timestamp", "amount_estimate", "note"),
    ),
}

SETTINGS_COLUMNS = (
    "water_limit",
    "salt_limit",
    "water_increment",
    "salt_increment",
    "day_start_hour",
    "data_retention_days",
    "updated_at",
)

# Embedded store migrations, applied in order. Each step only adds tables,
# indexes or nullable columns so existing collections are never rewritten.
LOCAL_MIGRATIONS: list[tuple[int, list[str]]] = [
    (
        1,
        [
            """
            CREATE TABLE IF NOT EXISTS intake_records (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                amount REAL NOT NULL,
                timestamp INTEGER NOT NULL,
                source TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_intake_timestamp ON intake_records (timestamp)",
            "CREATE INDEX IF NOT EXISTS idx_intake_type ON intake_records (type, timestamp)",
        ],
    ),
    (
        2,
        [
            """
            CREATE TABLE IF NOT EXISTS audit_logs (
                id TEXT PRIMARY KEY,
                timestamp INTEGER NOT NULL,
                action TEXT NOT NULL,
                details TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs (timestamp)",
            "CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_logs (action)",
        ],
    ),
    (
        3,
        [
            "ALTER TABLE intake_records ADD COLUMN note TEXT",
            """
            CREATE TABLE IF NOT EXISTS weight_records (
                id TEXT PRIMARY KEY,
                weight REAL NOT NULL,
                timestamp INTEGER NOT NULL,
                note TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_weight_timestamp ON weight_records (timestamp)",
            """
            CREATE TABLE IF NOT EXISTS blood_pressure_records (
                id TEXT PRIMARY KEY,
                systolic INTEGER NOT NULL,
                diastolic INTEGER NOT NULL,
                heart_rate INTEGER,
                position TEXT NOT NULL,
                arm TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                note TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_bp_timestamp ON blood_pressure_records (timestamp)",
        ],
    ),
    (
        4,
        [
            """
            CREATE TABLE IF NOT EXISTS eating_records (
                id TEXT PRIMARY KEY,
                timestamp INTEGER NOT NULL,
                note TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_eating_timestamp ON eating_records (timestamp)",
            """
            CREATE TABLE IF NOT EXISTS urination_records (
                id TEXT PRIMARY KEY,
                timestamp INTEGER NOT NULL,
                amount_estimate TEXT,
                note TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_urination_timestamp ON urination_records (timestamp)",
            """
            CREATE TABLE IF NOT EXISTS settings (
                singleton INTEGER PRIMARY KEY CHECK (singleton = 1),
                water_limit INTEGER NOT NULL,
                salt_limit INTEGER NOT NULL,
                water_increment INTEGER NOT NULL,
                salt_increment INTEGER NOT NULL,
                day_start_hour INTEGER NOT NULL,
                data_retention_days INTEGER NOT NULL,
                updated_at INTEGER
            )
            """,
        ],
    ),
]

LOCAL_SCHEMA_VERSION = LOCAL_MIGRATIONS[-1][0]

REMOTE_SCHEMA: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS intake_records (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('water', 'salt')),
        amount DOUBLE PRECISION NOT NULL,
        timestamp BIGINT NOT NULL,
        source TEXT,
        note TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS intake_user_ts_type_idx ON intake_records (user_id, timestamp, type)",
    """
    CREATE TABLE IF NOT EXISTS weight_records (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        weight DOUBLE PRECISION NOT NULL,
        timestamp BIGINT NOT NULL,
        note TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS weight_user_ts_idx ON weight_records (user_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS blood_pressure_records (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        systolic INTEGER NOT NULL,
        diastolic INTEGER NOT NULL,
        heart_rate INTEGER,
        position TEXT NOT NULL CHECK (position IN ('sitting', 'standing')),
        arm TEXT NOT NULL CHECK (arm IN ('left', 'right')),
        timestamp BIGINT NOT NULL,
        note TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS bp_user_ts_idx ON blood_pressure_records (user_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS eating_records (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        timestamp BIGINT NOT NULL,
        note TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS eating_user_ts_idx ON eating_records (user_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS urination_records (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        timestamp BIGINT NOT NULL,
        amount_estimate TEXT,
        note TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS urination_user_ts_idx ON urination_records (user_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS user_settings (
        user_id TEXT PRIMARY KEY,
        water_limit INTEGER NOT NULL,
        salt_limit INTEGER NOT NULL,
        water_increment INTEGER NOT NULL,
        salt_increment INTEGER NOT NULL,
        day_start_hour INTEGER NOT NULL,
        data_retention_days INTEGER NOT NULL,
        updated_at BIGINT
    )
    """,
]
