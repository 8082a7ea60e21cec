"""Scripted stand-ins for a pyodbc connection and cursor."""


class FakeCursor:
    """Replays scripted result sets the way a pyodbc cursor exposes them."""

    def __init__(self, connection):
        self.connection = connection
        self.result_sets = []
        self.index = 0
        self.closed = False

    def execute(self, sql, *params):
        if self.connection.execute_error is not None:
            raise self.connection.execute_error
        self.connection.executed.append((sql, params[0] if params else ()))
        self.result_sets = list(self.connection.script)
        self.index = 0
        return self

    @property
    def _current(self):
        if self.index < len(self.result_sets):
            return self.result_sets[self.index]
        return {}

    @property
    def description(self):
        columns = self._current.get("columns")
        if columns is None:
            return None
        return [(name, str, None, None, None, None, True) for name in columns]

    @property
    def rowcount(self):
        return self._current.get("rowcount", -1)

    @property
    def messages(self):
        return [("[01000] (0)", text) for text in self._current.get("messages", [])]

    def fetchall(self):
        return [tuple(row) for row in self._current.get("rows", [])]

    def fetchone(self):
        rows = self._current.get("rows", [])
        return tuple(rows[0]) if rows else None

    def nextset(self):
        self.index += 1
        return self.index < len(self.result_sets)

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, script, execute_error=None):
        self.script = script
        self.execute_error = execute_error
        self.executed = []
        self.timeout = 0
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True


class FakeDriver:
    """Connect factory that records descriptors and hands out fake connections."""

    def __init__(self, script=None, execute_error=None, connect_error=None):
        self.script = script or []
        self.execute_error = execute_error
        self.connect_error = connect_error
        self.descriptors = []
        self.connections = []

    def __call__(self, descriptor):
        self.descriptors.append(descriptor)
        if self.connect_error is not None:
            raise self.connect_error
        connection = FakeConnection(self.script, self.execute_error)
        self.connections.append(connection)
        return connection

    @property
    def connection(self):
        assert len(self.connections) == 1
        return self.connections[0]


def result_set(columns, rows=(), messages=()):
    return {"columns": list(columns), "rows": [list(r) for r in rows], "messages": list(messages)}


def message_set(*messages, rowcount=-1):
    return {"columns": None, "rows": [], "messages": list(messages), "rowcount": rowcount}
