import csv
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parent
DEFAULT_DB_PATH = str(ROOT / "data" / "db" / "app.db")
DB_PATH = Path(os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH))
DB_PATH.parent.mkdir(parents=True, exist_ok=True)
SEED_DIR = Path(os.environ.get("APP_SEED_DIR", str(ROOT / "data" / "seed")))

CAPACITY_EPSILON = 1e-6

CONTAINERS_COLUMNS = [
    "id",
    "number",
    "type",
    "transitaire",
    "max_pallets",
    "max_weight_kg",
    "max_volume_m3",
    "dangerous_goods",
    "status",
    "etd",
    "eta",
    "created_at",
]

GROUPAGES_COLUMNS = [
    "id",
    "reference",
    "container_id",
    "transitaire",
    "max_space_pallets",
    "available_space_pallets",
    "max_weight_kg",
    "available_weight_kg",
    "max_volume_m3",
    "available_volume_m3",
    "allows_dangerous_goods",
    "status",
    "created_at",
]

PRODUCTS_COLUMNS = [
    "id",
    "name",
    "dangerous",
    "imdg_class",
    "units_per_package",
    "packages_per_carton",
    "cartons_per_palette",
    "created_at",
]


def _utc_now():
    return datetime.utcnow().isoformat(timespec="seconds")


def get_connection():
    timeout_sec_raw = os.environ.get("SQLITE_BUSY_TIMEOUT_SEC", "30")
    try:
        timeout_sec = max(float(timeout_sec_raw), 1.0)
    except (TypeError, ValueError):
        timeout_sec = 30.0
    timeout_ms = int(timeout_sec * 1000)

    connection = sqlite3.connect(DB_PATH, timeout=timeout_sec)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=WAL")
    connection.execute("PRAGMA synchronous=NORMAL")
    connection.execute("PRAGMA foreign_keys=ON")
    connection.execute(f"PRAGMA busy_timeout={timeout_ms}")
    return connection


@contextmanager
def write_transaction():
    """Yield a connection holding the database write lock.

    Everything read and written inside the block is serialized against other
    writers, so a capacity check and the update it allows cannot interleave
    with another booking.
    """

    connection = get_connection()
    try:
        connection.execute("BEGIN IMMEDIATE")
        yield connection
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


@contextmanager
def _use_connection(connection=None):
    if connection is not None:
        yield connection
        return
    inner_connection = get_connection()
    try:
        with inner_connection:
            yield inner_connection
    finally:
        inner_connection.close()


def _get_columns(connection, table_name):
    rows = connection.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {row["name"] for row in rows}


def _ensure_column(connection, table_name, column_name, ddl):
    columns = _get_columns(connection, table_name)
    if column_name not in columns:
        connection.execute(f"ALTER TABLE {table_name} ADD COLUMN {ddl}")


def _coerce_seed_value(value):
    if value is None:
        return None
    text = str(value)
    if text == "":
        return None
    return value


def _seed_table_from_csv(connection, table_name, filename, columns):
    path = SEED_DIR / filename
    if not path.exists():
        return False
    existing = connection.execute(
        f"SELECT COUNT(*) FROM {table_name}"
    ).fetchone()
    if existing and existing[0]:
        return False

    with path.open("r", newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        rows = []
        for row in reader:
            rows.append([_coerce_seed_value(row.get(col)) for col in columns])

    if not rows:
        return False

    placeholders = ", ".join("?" for _ in columns)
    column_list = ", ".join(columns)
    connection.executemany(
        f"INSERT INTO {table_name} ({column_list}) VALUES ({placeholders})",
        rows,
    )
    return True


def _seed_reference_data(connection):
    seeds = [
        ("products", "products.csv", PRODUCTS_COLUMNS),
        ("containers", "containers.csv", CONTAINERS_COLUMNS),
        ("groupages", "groupages.csv", GROUPAGES_COLUMNS),
    ]

    for table_name, filename, columns in seeds:
        try:
            _seed_table_from_csv(connection, table_name, filename, columns)
        except sqlite3.Error:
            continue


def init_db():
    with _use_connection() as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS containers (
                id INTEGER PRIMARY KEY,
                number TEXT NOT NULL,
                type TEXT,
                transitaire TEXT NOT NULL,
                max_pallets INTEGER NOT NULL,
                max_weight_kg REAL NOT NULL,
                max_volume_m3 REAL NOT NULL,
                dangerous_goods INTEGER DEFAULT 0,
                status TEXT DEFAULT 'planning',
                etd TEXT,
                eta TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS groupages (
                id INTEGER PRIMARY KEY,
                reference TEXT,
                container_id INTEGER REFERENCES containers(id),
                transitaire TEXT NOT NULL,
                max_space_pallets INTEGER NOT NULL,
                available_space_pallets INTEGER NOT NULL,
                max_weight_kg REAL NOT NULL,
                available_weight_kg REAL NOT NULL,
                max_volume_m3 REAL NOT NULL,
                available_volume_m3 REAL NOT NULL,
                allows_dangerous_goods INTEGER DEFAULT 0,
                status TEXT DEFAULT 'available',
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                dangerous INTEGER DEFAULT 0,
                imdg_class TEXT,
                units_per_package INTEGER,
                packages_per_carton INTEGER,
                cartons_per_palette INTEGER,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY,
                order_number TEXT NOT NULL UNIQUE,
                supplier TEXT NOT NULL,
                current_transitaire TEXT,
                weight_kg REAL DEFAULT 0,
                volume_m3 REAL DEFAULT 0,
                carton_count INTEGER DEFAULT 0,
                is_received INTEGER DEFAULT 0,
                total_value REAL DEFAULT 0,
                container_id INTEGER REFERENCES containers(id),
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS order_products (
                id INTEGER PRIMARY KEY,
                order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                product_id INTEGER NOT NULL REFERENCES products(id),
                quantity INTEGER NOT NULL,
                unit_price REAL,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS groupage_bookings (
                id INTEGER PRIMARY KEY,
                groupage_id INTEGER NOT NULL REFERENCES groupages(id),
                order_id INTEGER NOT NULL REFERENCES orders(id),
                palettes_booked INTEGER NOT NULL DEFAULT 0,
                weight_booked REAL NOT NULL DEFAULT 0,
                volume_booked REAL NOT NULL DEFAULT 0,
                booking_status TEXT NOT NULL DEFAULT 'pending',
                has_dangerous_goods INTEGER DEFAULT 0,
                confirmed_by_transitaire INTEGER DEFAULT 0,
                cancelled_at TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        _ensure_column(connection, "containers", "etd", "etd TEXT")
        _ensure_column(connection, "containers", "eta", "eta TEXT")
        _ensure_column(connection, "groupage_bookings", "cancelled_at", "cancelled_at TEXT")
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_orders_container ON orders(container_id)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_order_products_order ON order_products(order_id)"
        )
        connection.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_bookings_groupage
            ON groupage_bookings(groupage_id, booking_status)
            """
        )
        _seed_reference_data(connection)


def create_container(container, connection=None):
    params = (
        (container.get("number") or "").strip(),
        container.get("type"),
        (container.get("transitaire") or "").strip(),
        int(container.get("max_pallets")),
        float(container.get("max_weight_kg")),
        float(container.get("max_volume_m3")),
        1 if container.get("dangerous_goods") else 0,
        container.get("status") or "planning",
        container.get("etd"),
        container.get("eta"),
        _utc_now(),
    )
    with _use_connection(connection) as active:
        cursor = active.execute(
            """
            INSERT INTO containers (
                number,
                type,
                transitaire,
                max_pallets,
                max_weight_kg,
                max_volume_m3,
                dangerous_goods,
                status,
                etd,
                eta,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            params,
        )
        return cursor.lastrowid


def get_container(container_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            "SELECT * FROM containers WHERE id = ?",
            (container_id,),
        ).fetchone()
        return dict(row) if row else None


def list_containers(transitaire=None):
    with _use_connection() as connection:
        if transitaire:
            rows = connection.execute(
                "SELECT * FROM containers WHERE transitaire = ? ORDER BY id",
                (transitaire,),
            ).fetchall()
        else:
            rows = connection.execute("SELECT * FROM containers ORDER BY id").fetchall()
        return [dict(row) for row in rows]


def update_container_status(container_id, status):
    with _use_connection() as connection:
        cursor = connection.execute(
            "UPDATE containers SET status = ? WHERE id = ?",
            (status, container_id),
        )
        return cursor.rowcount


def create_groupage(groupage, connection=None):
    max_pallets = int(groupage.get("max_space_pallets"))
    max_weight = float(groupage.get("max_weight_kg"))
    max_volume = float(groupage.get("max_volume_m3"))
    params = (
        groupage.get("reference"),
        groupage.get("container_id"),
        (groupage.get("transitaire") or "").strip(),
        max_pallets,
        max_pallets,
        max_weight,
        max_weight,
        max_volume,
        max_volume,
        1 if groupage.get("allows_dangerous_goods") else 0,
        groupage.get("status") or "available",
        _utc_now(),
    )
    with _use_connection(connection) as active:
        cursor = active.execute(
            """
            INSERT INTO groupages (
                reference,
                container_id,
                transitaire,
                max_space_pallets,
                available_space_pallets,
                max_weight_kg,
                available_weight_kg,
                max_volume_m3,
                available_volume_m3,
                allows_dangerous_goods,
                status,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            params,
        )
        return cursor.lastrowid


def get_groupage(groupage_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            "SELECT * FROM groupages WHERE id = ?",
            (groupage_id,),
        ).fetchone()
        return dict(row) if row else None


def reserve_groupage_capacity(connection, groupage_id, palettes, weight, volume):
    """Decrement the available counters only if every one of them suffices.

    Returns False, leaving the row untouched, when the reservation does not
    fit. The groupage is marked full once no pallet position remains.
    """

    cursor = connection.execute(
        """
        UPDATE groupages
        SET available_space_pallets = available_space_pallets - ?,
            available_weight_kg = available_weight_kg - ?,
            available_volume_m3 = available_volume_m3 - ?,
            status = CASE
                WHEN available_space_pallets - ? <= 0 THEN 'full'
                ELSE status
            END
        WHERE id = ?
          AND available_space_pallets >= ?
          AND available_weight_kg + ? >= ?
          AND available_volume_m3 + ? >= ?
        """,
        (
            palettes,
            weight,
            volume,
            palettes,
            groupage_id,
            palettes,
            CAPACITY_EPSILON,
            weight,
            CAPACITY_EPSILON,
            volume,
        ),
    )
    return cursor.rowcount == 1


def release_groupage_capacity(connection, groupage_id, palettes, weight, volume):
    connection.execute(
        """
        UPDATE groupages
        SET available_space_pallets = available_space_pallets + ?,
            available_weight_kg = available_weight_kg + ?,
            available_volume_m3 = available_volume_m3 + ?,
            status = CASE
                WHEN status = 'full' AND available_space_pallets + ? > 0 THEN 'available'
                ELSE status
            END
        WHERE id = ?
        """,
        (palettes, weight, volume, palettes, groupage_id),
    )


def create_product(product, connection=None):
    params = (
        (product.get("name") or "").strip(),
        1 if product.get("dangerous") or product.get("imdg_class") else 0,
        (product.get("imdg_class") or "").strip() or None,
        product.get("units_per_package") or None,
        product.get("packages_per_carton") or None,
        product.get("cartons_per_palette") or None,
        _utc_now(),
    )
    with _use_connection(connection) as active:
        cursor = active.execute(
            """
            INSERT INTO products (
                name,
                dangerous,
                imdg_class,
                units_per_package,
                packages_per_carton,
                cartons_per_palette,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            params,
        )
        return cursor.lastrowid


def get_product(product_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            "SELECT * FROM products WHERE id = ?",
            (product_id,),
        ).fetchone()
        return dict(row) if row else None


def get_order_by_number(order_number, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            "SELECT id, order_number FROM orders WHERE order_number = ?",
            ((order_number or "").strip(),),
        ).fetchone()
        return dict(row) if row else None


def create_order(order):
    """Insert an order and its product lines in one transaction.

    Lines reference an existing catalog product by ``product_id`` or describe
    a new product inline.
    """

    created_at = _utc_now()
    with _use_connection() as connection:
        cursor = connection.execute(
            """
            INSERT INTO orders (
                order_number,
                supplier,
                current_transitaire,
                weight_kg,
                volume_m3,
                carton_count,
                is_received,
                total_value,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                (order.get("order_number") or "").strip(),
                (order.get("supplier") or "").strip(),
                (order.get("current_transitaire") or "").strip() or None,
                float(order.get("weight_kg") or 0),
                float(order.get("volume_m3") or 0),
                int(order.get("carton_count") or 0),
                1 if order.get("is_received") else 0,
                float(order.get("total_value") or 0),
                created_at,
            ),
        )
        order_id = cursor.lastrowid
        for line in order.get("products") or []:
            product_id = line.get("product_id")
            if not product_id:
                product_id = create_product(line, connection=connection)
            connection.execute(
                """
                INSERT INTO order_products (order_id, product_id, quantity, unit_price, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (order_id, product_id, int(line.get("quantity")), line.get("unit_price"), created_at),
            )
        return order_id


def update_order_reception(order_id, is_received, current_transitaire=None):
    with _use_connection() as connection:
        if current_transitaire is None:
            cursor = connection.execute(
                "UPDATE orders SET is_received = ? WHERE id = ?",
                (1 if is_received else 0, order_id),
            )
        else:
            cursor = connection.execute(
                "UPDATE orders SET is_received = ?, current_transitaire = ? WHERE id = ?",
                (1 if is_received else 0, current_transitaire, order_id),
            )
        return cursor.rowcount


def _list_product_rows_for_order_ids(connection, order_ids):
    if not order_ids:
        return {}
    placeholders = ", ".join("?" for _ in order_ids)
    rows = connection.execute(
        f"""
        SELECT
            op.order_id,
            op.product_id,
            op.quantity,
            op.unit_price,
            p.name,
            p.dangerous,
            p.imdg_class,
            p.units_per_package,
            p.packages_per_carton,
            p.cartons_per_palette
        FROM order_products op
        JOIN products p ON p.id = op.product_id
        WHERE op.order_id IN ({placeholders})
        ORDER BY op.id ASC
        """,
        list(order_ids),
    ).fetchall()
    grouped = {}
    for row in rows:
        grouped.setdefault(row["order_id"], []).append(dict(row))
    return grouped


def _attach_products(connection, order_rows):
    orders = [dict(row) for row in order_rows]
    products_by_order = _list_product_rows_for_order_ids(
        connection, [order["id"] for order in orders]
    )
    for order in orders:
        order["products"] = products_by_order.get(order["id"], [])
    return orders


def get_order(order_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        if not row:
            return None
        return _attach_products(active, [row])[0]


def list_orders_by_ids(order_ids, connection=None):
    cleaned_ids = sorted({int(value) for value in order_ids or []})
    if not cleaned_ids:
        return []
    placeholders = ", ".join("?" for _ in cleaned_ids)
    with _use_connection(connection) as active:
        rows = active.execute(
            f"SELECT * FROM orders WHERE id IN ({placeholders}) ORDER BY id",
            cleaned_ids,
        ).fetchall()
        return _attach_products(active, rows)


def list_container_orders(container_id, connection=None):
    with _use_connection(connection) as active:
        rows = active.execute(
            "SELECT * FROM orders WHERE container_id = ? ORDER BY id",
            (container_id,),
        ).fetchall()
        return _attach_products(active, rows)


def link_order_to_container(connection, order_id, container_id):
    cursor = connection.execute(
        "UPDATE orders SET container_id = ? WHERE id = ? AND container_id IS NULL",
        (container_id, order_id),
    )
    return cursor.rowcount == 1


def unlink_order_from_container(container_id, order_id):
    with _use_connection() as connection:
        cursor = connection.execute(
            "UPDATE orders SET container_id = NULL WHERE id = ? AND container_id = ?",
            (order_id, container_id),
        )
        return cursor.rowcount == 1


def list_groupage_bookings(groupage_id, include_cancelled=False, connection=None):
    with _use_connection(connection) as active:
        if include_cancelled:
            rows = active.execute(
                "SELECT * FROM groupage_bookings WHERE groupage_id = ? ORDER BY id",
                (groupage_id,),
            ).fetchall()
        else:
            rows = active.execute(
                """
                SELECT * FROM groupage_bookings
                WHERE groupage_id = ? AND booking_status != 'cancelled'
                ORDER BY id
                """,
                (groupage_id,),
            ).fetchall()
        return [dict(row) for row in rows]


def get_booking(booking_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            "SELECT * FROM groupage_bookings WHERE id = ?",
            (booking_id,),
        ).fetchone()
        return dict(row) if row else None


def get_active_booking_for_order(order_id, connection=None):
    with _use_connection(connection) as active:
        row = active.execute(
            """
            SELECT * FROM groupage_bookings
            WHERE order_id = ? AND booking_status != 'cancelled'
            ORDER BY id DESC
            LIMIT 1
            """,
            (order_id,),
        ).fetchone()
        return dict(row) if row else None


def insert_booking(connection, booking):
    cursor = connection.execute(
        """
        INSERT INTO groupage_bookings (
            groupage_id,
            order_id,
            palettes_booked,
            weight_booked,
            volume_booked,
            booking_status,
            has_dangerous_goods,
            confirmed_by_transitaire,
            created_at
        )
        VALUES (?, ?, ?, ?, ?, 'pending', ?, 0, ?)
        """,
        (
            booking["groupage_id"],
            booking["order_id"],
            int(booking.get("palettes_booked") or 0),
            float(booking.get("weight_booked") or 0),
            float(booking.get("volume_booked") or 0),
            1 if booking.get("has_dangerous_goods") else 0,
            _utc_now(),
        ),
    )
    return cursor.lastrowid


def mark_booking_cancelled(connection, booking_id):
    cursor = connection.execute(
        """
        UPDATE groupage_bookings
        SET booking_status = 'cancelled',
            confirmed_by_transitaire = 0,
            cancelled_at = ?
        WHERE id = ? AND booking_status != 'cancelled'
        """,
        (_utc_now(), booking_id),
    )
    return cursor.rowcount == 1


def mark_booking_confirmed(booking_id):
    with _use_connection() as connection:
        cursor = connection.execute(
            """
            UPDATE groupage_bookings
            SET booking_status = 'confirmed',
                confirmed_by_transitaire = 1
            WHERE id = ? AND booking_status = 'pending'
            """,
            (booking_id,),
        )
        return cursor.rowcount == 1


def delete_booking_row(connection, booking_id):
    connection.execute("DELETE FROM groupage_bookings WHERE id = ?", (booking_id,))
