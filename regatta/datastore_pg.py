import logging
import os
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor, execute_values

from .errors import NotFound, StoreError
from .models import Regatta, RaceResult, Team, STATUSES

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS regattas (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    location TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'scheduled'
);

CREATE TABLE IF NOT EXISTS teams (
    id TEXT PRIMARY KEY,
    regatta_id TEXT NOT NULL REFERENCES regattas(id) ON DELETE CASCADE,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS race_results (
    id TEXT PRIMARY KEY,
    regatta_id TEXT NOT NULL REFERENCES regattas(id) ON DELETE CASCADE,
    team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    race_number INTEGER NOT NULL,
    position INTEGER NOT NULL,
    points INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_teams_regatta ON teams(regatta_id);
CREATE INDEX IF NOT EXISTS idx_results_regatta ON race_results(regatta_id);
"""

# Rows written before the status vocabulary was closed used 'SCHEDULED'.
_NORMALIZE_STATUS_SQL = "UPDATE regattas SET status = lower(status) WHERE status <> lower(status)"

# Older deployments appended a row on every resubmission; keep the physically
# latest row of each (regatta, team, race) slot so the unique index can build.
_DEDUPE_RESULTS_SQL = """
DELETE FROM race_results a
USING race_results b
WHERE a.regatta_id = b.regatta_id
  AND a.team_id = b.team_id
  AND a.race_number = b.race_number
  AND a.ctid < b.ctid
"""

_RESULT_SLOT_INDEX_SQL = (
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_results_slot ON race_results(regatta_id, team_id, race_number)"
)

# Each step commits on its own so a later failure keeps earlier work.
_SCHEMA_STEPS = (
    ("tables", (SCHEMA_SQL,)),
    ("normalize_status", (_NORMALIZE_STATUS_SQL,)),
    ("result_slot_index", (_DEDUPE_RESULTS_SQL, _RESULT_SLOT_INDEX_SQL)),
)


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Common connection kwargs: connect_timeout + TCP keepalives.

    Defaults:
      - connect_timeout: 10 seconds (overridable via DB_CONNECT_TIMEOUT)
      - keepalives: enabled by default; can be disabled by DB_KEEPALIVES=0
      - keepalive tunables applied if provided (IDLE/INTERVAL/COUNT)
    """
    kwargs: Dict[str, Any] = {}
    ct_env = _env_int("DB_CONNECT_TIMEOUT")
    kwargs["connect_timeout"] = ct_env if ct_env is not None else 10

    ka_env = os.environ.get("DB_KEEPALIVES")
    if ka_env is None:
        kwargs["keepalives"] = 1
    else:
        kwargs["keepalives"] = 0 if str(ka_env).lower() in ("0", "false") else 1

    idle = _env_int("DB_KEEPALIVES_IDLE")
    if idle is not None:
        kwargs["keepalives_idle"] = idle
    interval = _env_int("DB_KEEPALIVES_INTERVAL")
    if interval is not None:
        kwargs["keepalives_interval"] = interval
    count = _env_int("DB_KEEPALIVES_COUNT")
    if count is not None:
        kwargs["keepalives_count"] = count
    return kwargs


def _translate_errors(fn: Callable) -> Callable:
    """Map psycopg2 failures onto the closed error taxonomy.

    Driver text goes to the log only; callers get a stable message.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except pg_errors.ForeignKeyViolation:
            logger.warning("%s: foreign key violation", fn.__name__, exc_info=True)
            raise NotFound("Referenced regatta or team does not exist.")
        except psycopg2.Error:
            logger.exception("%s failed", fn.__name__)
            raise StoreError(f"Database operation '{fn.__name__}' failed.")
    return wrapper


def _regatta_from_row(row: Dict[str, Any]) -> Regatta:
    return Regatta(
        id=row["id"],
        name=row["name"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        location=row["location"],
        status=row["status"],
    )


def _team_from_row(row: Dict[str, Any]) -> Team:
    return Team(id=row["id"], name=row["name"], regatta_id=row["regatta_id"])


class PgStore:
    """PostgreSQL-backed store for regattas, teams and race results.

    The handle is built once per process and handed to ``create_app``. It
    owns an optional ``ThreadedConnectionPool``; without one every operation
    opens a direct connection.
    """

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 10, use_pool: bool = True) -> None:
        if not dsn:
            raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
        self.dsn = dsn
        self._pool: Optional[pg_pool.AbstractConnectionPool] = None
        if use_pool:
            self.init_pool(minconn=minconn, maxconn=maxconn)

    @classmethod
    def from_env(cls) -> "PgStore":
        minconn = _env_int("DB_POOL_MIN", 1) or 1
        maxconn = _env_int("DB_POOL_MAX", 10) or 10
        return cls(os.environ.get("DATABASE_URL", ""), minconn=minconn, maxconn=maxconn)

    def init_pool(self, minconn: int = 1, maxconn: int = 10) -> None:
        """Create the connection pool; a failure leaves direct connections in use."""
        if self._pool is not None:
            return
        try:
            self._pool = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=self.dsn, **_connect_kwargs())
        except psycopg2.Error:
            logger.exception("PostgreSQL pool initialization failed; continuing without pool")
            self._pool = None

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    @contextmanager
    def _get_conn(self):
        """Yield a connection from the pool if available, else a direct one.

        Pooled connections are pinged with ``SELECT 1`` first; a stale one is
        discarded and the checkout retried once. On exit the connection is
        rolled back if still inside a transaction, so callers must commit.
        """
        if self._pool is not None:
            conn = self._checkout()
            try:
                try:
                    yield conn
                except Exception:
                    self._quiet_rollback(conn)
                    raise
            finally:
                # status 0 = idle, 1 = active, 2 = intrans, 3 = inerror
                if getattr(conn, "closed", 0) == 0 and getattr(conn, "status", 0) in (1, 2, 3):
                    self._quiet_rollback(conn)
                self._pool.putconn(conn)
        else:
            conn = psycopg2.connect(self.dsn, **_connect_kwargs())
            try:
                try:
                    yield conn
                except Exception:
                    self._quiet_rollback(conn)
                    raise
            finally:
                conn.close()

    def _checkout(self):
        retried = False
        while True:
            conn = self._pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                # Clear the implicit transaction opened by the ping
                if not getattr(conn, "autocommit", False):
                    conn.rollback()
                return conn
            except (psycopg2.OperationalError, psycopg2.InterfaceError):
                logger.warning("Discarding stale pooled connection", exc_info=True)
                self._pool.putconn(conn, close=True)
                if retried:
                    raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")
                retried = True

    @staticmethod
    def _quiet_rollback(conn) -> None:
        try:
            conn.rollback()
        except psycopg2.Error:
            logger.warning("Rollback failed", exc_info=True)

    # -- schema ---------------------------------------------------------

    @_translate_errors
    def init_schema(self) -> None:
        """Create tables, normalize legacy statuses, then build the slot index.

        Every step is attempted; failed steps are rolled back, logged and
        reported together as a StoreError once the rest have committed.
        """
        failed: List[str] = []
        with self._get_conn() as conn:
            for name, statements in _SCHEMA_STEPS:
                try:
                    with conn.cursor() as cur:
                        for sql in statements:
                            cur.execute(sql)
                    conn.commit()
                except psycopg2.Error:
                    logger.exception("schema step %s failed", name)
                    self._quiet_rollback(conn)
                    failed.append(name)
        if failed:
            raise StoreError(f"Schema steps failed: {', '.join(failed)}.")

    @_translate_errors
    def ping(self) -> Dict[str, Any]:
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute("SELECT current_user, current_database(), version()")
            user, db, ver = cur.fetchone()
            conn.rollback()
        return {"user": user, "database": db, "server_version": (ver or "").split("\n")[0]}

    # -- regattas -------------------------------------------------------

    @_translate_errors
    def create_regatta(self, regatta: Regatta) -> Regatta:
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO regattas (id, name, start_date, end_date, location, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (regatta.id, regatta.name, regatta.start_date, regatta.end_date, regatta.location, regatta.status),
            )
            conn.commit()
        return regatta

    @_translate_errors
    def list_regattas(self) -> List[Regatta]:
        with self._get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT id, name, start_date, end_date, location, status FROM regattas ORDER BY start_date, name")
            rows = cur.fetchall()
            conn.rollback()
        return [_regatta_from_row(r) for r in rows]

    @_translate_errors
    def get_regatta(self, regatta_id: str) -> Optional[Regatta]:
        with self._get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                "SELECT id, name, start_date, end_date, location, status FROM regattas WHERE id = %s",
                (regatta_id,),
            )
            row = cur.fetchone()
            conn.rollback()
        return _regatta_from_row(row) if row else None

    @_translate_errors
    def update_regatta(self, regatta: Regatta) -> bool:
        """Overwrite all mutable fields; returns False when no row matched."""
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                """
                UPDATE regattas SET name = %s, start_date = %s, end_date = %s, location = %s, status = %s
                WHERE id = %s
                """,
                (regatta.name, regatta.start_date, regatta.end_date, regatta.location, regatta.status, regatta.id),
            )
            updated = cur.rowcount
            conn.commit()
        return updated > 0

    @_translate_errors
    def delete_regatta(self, regatta_id: str) -> None:
        """Delete a regatta with its teams and results in one transaction.

        Dependents are removed explicitly so tables created before the
        cascading foreign keys existed behave the same.
        """
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM race_results WHERE regatta_id = %s", (regatta_id,))
            results = cur.rowcount
            cur.execute("DELETE FROM teams WHERE regatta_id = %s", (regatta_id,))
            teams = cur.rowcount
            cur.execute("DELETE FROM regattas WHERE id = %s", (regatta_id,))
            conn.commit()
        logger.info("delete_regatta id=%s cascaded teams=%d results=%d", regatta_id, teams, results)

    # -- teams ----------------------------------------------------------

    @_translate_errors
    def list_teams(self, regatta_id: str) -> List[Team]:
        with self._get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT id, name, regatta_id FROM teams WHERE regatta_id = %s ORDER BY name, id", (regatta_id,))
            rows = cur.fetchall()
            conn.rollback()
        return [_team_from_row(r) for r in rows]

    @_translate_errors
    def get_team(self, regatta_id: str, team_id: str) -> Optional[Team]:
        with self._get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                "SELECT id, name, regatta_id FROM teams WHERE id = %s AND regatta_id = %s",
                (team_id, regatta_id),
            )
            row = cur.fetchone()
            conn.rollback()
        return _team_from_row(row) if row else None

    @_translate_errors
    def create_team(self, team: Team) -> Team:
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                "INSERT INTO teams (id, name, regatta_id) VALUES (%s, %s, %s)",
                (team.id, team.name, team.regatta_id),
            )
            conn.commit()
        return team

    @_translate_errors
    def rename_team(self, regatta_id: str, team_id: str, name: str) -> bool:
        """Rename only when the team belongs to ``regatta_id``."""
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                "UPDATE teams SET name = %s WHERE id = %s AND regatta_id = %s",
                (name, team_id, regatta_id),
            )
            updated = cur.rowcount
            conn.commit()
        return updated > 0

    @_translate_errors
    def delete_team(self, regatta_id: str, team_id: str) -> bool:
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute("SELECT 1 FROM teams WHERE id = %s AND regatta_id = %s", (team_id, regatta_id))
            if cur.fetchone() is None:
                conn.rollback()
                return False
            cur.execute("DELETE FROM race_results WHERE team_id = %s", (team_id,))
            cur.execute("DELETE FROM teams WHERE id = %s AND regatta_id = %s", (team_id, regatta_id))
            conn.commit()
        return True

    # -- race results ---------------------------------------------------

    @_translate_errors
    def save_race_results(self, regatta_id: str, race_number: int, results: List[RaceResult]) -> int:
        """Upsert one race's results atomically.

        A (regatta, team, race number) slot that already has a row keeps its
        id and takes the new position and points. Either every row of the
        batch is written or none is.
        """
        if not results:
            return 0
        rows = [(r.id, regatta_id, r.team_id, race_number, r.position, r.points) for r in results]
        with self._get_conn() as conn, conn.cursor() as cur:
            execute_values(
                cur,
                """
                INSERT INTO race_results (id, regatta_id, team_id, race_number, position, points)
                VALUES %s
                ON CONFLICT (regatta_id, team_id, race_number) DO UPDATE SET
                    position = EXCLUDED.position,
                    points = EXCLUDED.points
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    @_translate_errors
    def clear_results(self, regatta_id: str) -> int:
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM race_results WHERE regatta_id = %s", (regatta_id,))
            deleted = cur.rowcount
            conn.commit()
        return deleted

    @_translate_errors
    def list_standing_rows(self, regatta_id: str) -> List[Dict[str, Any]]:
        with self._get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT r.id, r.regatta_id, r.team_id, t.name AS team_name,
                       r.race_number, r.position, r.points
                FROM race_results r
                JOIN teams t ON r.team_id = t.id
                WHERE r.regatta_id = %s
                ORDER BY r.race_number, r.position
                """,
                (regatta_id,),
            )
            rows = [dict(r) for r in cur.fetchall()]
            conn.rollback()
        return rows

    # -- dashboard counters --------------------------------------------

    def _scalar(self, sql: str, params: tuple = ()) -> int:
        with self._get_conn() as conn, conn.cursor() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
            conn.rollback()
        return int(row[0]) if row else 0

    @_translate_errors
    def count_regattas_by_status(self, status: str) -> int:
        if status not in STATUSES:
            raise ValueError(f"unknown status {status!r}")
        return self._scalar("SELECT COUNT(*) FROM regattas WHERE status = %s", (status,))

    @_translate_errors
    def count_teams(self) -> int:
        return self._scalar("SELECT COUNT(*) FROM teams")

    @_translate_errors
    def count_completed_races(self) -> int:
        return self._scalar("SELECT COUNT(*) FROM (SELECT DISTINCT regatta_id, race_number FROM race_results) AS races")
