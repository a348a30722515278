"""Fake psycopg2 connection objects for exercising PgStore without a server."""


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = 0
        self._result = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        handler = self.conn.on_execute
        outcome = handler(sql, params) if handler else None
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            self.rowcount = outcome
            self._result = []
        else:
            self._result = list(outcome or [])
            self.rowcount = len(self._result)

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class FakeConn:
    autocommit = False
    closed = 0
    status = 0

    def __init__(self, on_execute=None):
        self.on_execute = on_execute
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


class FakePool:
    def __init__(self, *conns):
        self.conns = list(conns)
        self.calls_get = 0
        self.calls_put = []

    def getconn(self):
        self.calls_get += 1
        return self.conns.pop(0) if len(self.conns) > 1 else self.conns[0]

    def putconn(self, conn, close=False):
        self.calls_put.append((conn, close))
        if close:
            conn.close()
