"""Table definitions for the normalized schema and the legacy source tables."""

from typing import List, Tuple

TIMESTAMPS = """
    created_at TEXT NOT NULL DEFAULT (datetime('now','localtime')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))"""

# Normalized tables in creation order (parents before children)
CORE_TABLES: List[Tuple[str, str]] = [
    ("customer", f"""
CREATE TABLE customer (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_name TEXT NOT NULL UNIQUE,
    usage_count INTEGER NOT NULL DEFAULT 0,
    last_used TEXT,{TIMESTAMPS}
)"""),
    ("customer_contact", f"""
CREATE TABLE customer_contact (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id INTEGER REFERENCES customer(id) ON DELETE SET NULL,
    contact_name TEXT NOT NULL,
    contact_email TEXT,
    usage_count INTEGER NOT NULL DEFAULT 0,
    last_used TEXT,{TIMESTAMPS}
)"""),
    ("purchase_order", f"""
CREATE TABLE purchase_order (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    po_number TEXT NOT NULL UNIQUE,
    oe_number TEXT,
    contact_id INTEGER REFERENCES customer_contact(id) ON DELETE SET NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    closed_at TEXT,{TIMESTAMPS}
)"""),
    ("job", f"""
CREATE TABLE job (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_number TEXT NOT NULL UNIQUE,
    po_id INTEGER NOT NULL REFERENCES purchase_order(id) ON DELETE CASCADE,
    priority TEXT NOT NULL DEFAULT 'Normal',{TIMESTAMPS}
)"""),
    ("part", f"""
CREATE TABLE part (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    previous_id INTEGER REFERENCES part(id) ON DELETE SET NULL,
    next_id INTEGER REFERENCES part(id) ON DELETE SET NULL,
    drawing_number TEXT NOT NULL,
    revision TEXT NOT NULL DEFAULT '-',
    description TEXT,
    is_assembly INTEGER DEFAULT NULL,
    has_parent INTEGER,
    unit_price REAL NOT NULL DEFAULT 0,{TIMESTAMPS},
    UNIQUE(drawing_number, revision)
)"""),
    ("order_item", f"""
CREATE TABLE order_item (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL REFERENCES job(id) ON DELETE CASCADE,
    part_id INTEGER REFERENCES part(id) ON DELETE SET NULL,
    line_number INTEGER NOT NULL,
    quantity INTEGER NOT NULL DEFAULT 0,
    actual_price REAL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    drawing_release_date TEXT,
    delivery_required_date TEXT,
    unique_key TEXT UNIQUE,{TIMESTAMPS},
    UNIQUE(job_id, line_number)
)"""),
    ("part_tree", f"""
CREATE TABLE part_tree (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    parent_id INTEGER NOT NULL REFERENCES part(id) ON DELETE CASCADE,
    child_id INTEGER NOT NULL REFERENCES part(id) ON DELETE CASCADE,
    quantity INTEGER NOT NULL DEFAULT 1,{TIMESTAMPS},
    UNIQUE(parent_id, child_id)
)"""),
    ("drawing_file", f"""
CREATE TABLE drawing_file (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    part_id INTEGER REFERENCES part(id) ON DELETE SET NULL,
    file_name TEXT NOT NULL,
    file_path TEXT NOT NULL UNIQUE,
    revision TEXT NOT NULL DEFAULT '-',
    is_active INTEGER NOT NULL DEFAULT 1,
    last_modified_at TEXT,{TIMESTAMPS}
)"""),
    ("folder_mapping", f"""
CREATE TABLE folder_mapping (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id INTEGER NOT NULL REFERENCES customer(id) ON DELETE CASCADE,
    folder_name TEXT NOT NULL,
    is_verified INTEGER NOT NULL DEFAULT 0,{TIMESTAMPS},
    UNIQUE(customer_id, folder_name)
)"""),
]

# Denormalized join targets built from the legacy assemblies table
DETAIL_TABLES: List[Tuple[str, str]] = [
    ("detail_drawing", f"""
CREATE TABLE detail_drawing (
    drawing_id INTEGER PRIMARY KEY AUTOINCREMENT,
    drawing_number TEXT NOT NULL UNIQUE,
    description TEXT,
    revision TEXT,
    isAssembly INTEGER DEFAULT 0,{TIMESTAMPS}
)"""),
    ("assembly_detail", f"""
CREATE TABLE assembly_detail (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    part_number TEXT NOT NULL,
    drawing_number TEXT NOT NULL,
    quantity TEXT,
    status TEXT DEFAULT 'Pending',
    file_location TEXT,
    delivery_required_date TEXT,{TIMESTAMPS}
)"""),
]

MIGRATIONS_TABLE = "schema_migrations"

MIGRATIONS_DDL = f"""
CREATE TABLE {MIGRATIONS_TABLE} (
    sequence INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    applied_at TEXT NOT NULL DEFAULT (datetime('now','localtime'))
)"""

# Legacy flat tables the engine reads from. Migrations extend some of them
# (jobs gains unique_key, file_location, has_assembly_details) but never
# create or drop them.
LEGACY_TABLES: List[Tuple[str, str]] = [
    ("jobs", """
CREATE TABLE jobs (
    job_id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_number TEXT,
    line_number TEXT,
    part_number TEXT,
    revision TEXT,
    part_description TEXT,
    customer_name TEXT,
    customer_contact TEXT,
    po_number TEXT,
    oe_number TEXT,
    job_quantity TEXT,
    unit_price TEXT,
    drawing_release TEXT,
    delivery_required_date TEXT,
    delivery_shipped_date TEXT,
    create_timestamp TEXT,
    last_modified TEXT
)"""),
    ("drawings", """
CREATE TABLE drawings (
    drawing_number TEXT,
    drawing_name TEXT,
    file_location TEXT
)"""),
    ("assemblies", """
CREATE TABLE assemblies (
    part_number TEXT,
    drawing_number TEXT,
    description TEXT,
    quantity TEXT
)"""),
    ("customer_folder_map", """
CREATE TABLE customer_folder_map (
    customer_name TEXT,
    folder_name TEXT
)"""),
]

# Lookup indexes created by the final migration
INDEXES: List[Tuple[str, str, Tuple[str, ...]]] = [
    ("idx_contact_customer_id", "customer_contact", ("customer_id",)),
    ("idx_po_contact_id", "purchase_order", ("contact_id",)),
    ("idx_po_oe_number", "purchase_order", ("oe_number",)),
    ("idx_job_po_id", "job", ("po_id",)),
    ("idx_oi_part_id", "order_item", ("part_id",)),
    ("idx_oi_status", "order_item", ("status",)),
    ("idx_part_drawing_number", "part", ("drawing_number",)),
    ("idx_part_is_assembly", "part", ("is_assembly",)),
    ("idx_pt_child_id", "part_tree", ("child_id",)),
    ("idx_df_part_id", "drawing_file", ("part_id",)),
    ("idx_df_file_name", "drawing_file", ("file_name",)),
    ("idx_df_revision", "drawing_file", ("revision",)),
    ("idx_fm_customer_id", "folder_mapping", ("customer_id",)),
    ("idx_ad_part_number", "assembly_detail", ("part_number",)),
    ("idx_ad_unique_key", "assembly_detail", ("unique_key",)),
]


def install_legacy_tables(store) -> List[str]:
    """Create any missing legacy source tables. Returns the names created."""
    created = []
    for name, ddl in LEGACY_TABLES:
        if store.create_table(name, ddl):
            created.append(name)
    return created
