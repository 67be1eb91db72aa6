'''In-memory history store and dict backed entities.

Useful for applications which keep records as plain mappings and for
exercising the versioning logic without a database::

    store = MemoryStore()
    policy = VersioningPolicy('articles', fields=['id', 'name'])
    article = DictEntity(policy, {'id': 1, 'name': 'A'}, store)
    article.save()
    article['name'] = 'B'
    article.save()      # history row {'article_id': 1, 'name': 'A'}
'''
import itertools
import logging
logger = logging.getLogger('vhistory')

from .history import HistoryEntity, HistoryStore, get_operator, \
        normalize_cutoff, save_history


class MemoryQuery(object):

    def __init__(self, table):
        self.table = table
        self.conditions = []
        self.order = None
        self.offset = 0

    def _compare(self, field, op, value, convert=None):
        compare = get_operator(op)

        def condition(row):
            current = row.get(field)
            if current is None:
                return False
            if convert is not None:
                current = convert(current)
            return compare(current, value)
        self.conditions.append(condition)
        return self

    def where(self, field, op, value):
        return self._compare(field, op, value)

    def where_date(self, field, op, value):
        return self._compare(field, op, normalize_cutoff(value),
                normalize_cutoff)

    def where_null(self, field):
        self.conditions.append(lambda row: row.get(field) is None)
        return self

    def where_any(self, *groups):
        built = [group(MemoryQuery(self.table)) for group in groups]
        self.conditions.append(lambda row: any(g.matches(row) for g in built))
        return self

    def order_by_desc(self, field):
        self.order = field
        return self

    def skip(self, offset):
        self.offset = offset
        return self

    def matches(self, row):
        return all(condition(row) for condition in self.conditions)

    def _rows(self):
        rows = [row for row in self.table.rows if self.matches(row)]
        if self.order is not None:
            rows.sort(key=lambda row: row[self.order], reverse=True)
        return [dict(row) for row in rows[self.offset:]]

    def all(self):
        return self._rows()

    def first(self):
        rows = self._rows()
        if rows:
            return rows[0]
        return None

    def count(self):
        return len(self._rows())


class MemoryTable(object):
    '''Append-only table with an auto-incrementing row id.'''

    def __init__(self, name, key='id'):
        self.name = name
        self.key = key
        self.rows = []
        self._ids = itertools.count(1)

    def insert(self, row):
        row = dict(row)
        row[self.key] = next(self._ids)
        self.rows.append(row)
        return row[self.key]

    def query(self):
        return MemoryQuery(self)


class MemoryConnection(object):

    def __init__(self, name=None, key='id'):
        self.name = name
        self.key = key
        self.tables = {}

    def table(self, name):
        if name not in self.tables:
            self.tables[name] = MemoryTable(name, self.key)
        return self.tables[name]


class MemoryStore(HistoryStore):
    '''Connections and tables are created on first use.'''

    def __init__(self, key='id'):
        self.key = key
        self.connections = {}

    def connection(self, name=None):
        if name not in self.connections:
            self.connections[name] = MemoryConnection(name, self.key)
        return self.connections[name]


class DictEntity(HistoryEntity):
    '''A record held as a dict.

    Saving a previously saved record writes history to ``store`` first.
    '''

    def __init__(self, policy, values=None, store=None, persisted=False):
        self.policy = policy
        self.values = dict(values or {})
        self.store = store
        self._original = None
        if persisted:
            self._sync_original()

    def _sync_original(self):
        self._original = dict((field, self.values[field])
                for field in self._declared() if field in self.values)

    def _declared(self):
        return self.policy.fields or list(self.values.keys())

    def __getitem__(self, field):
        return self.values[field]

    def __setitem__(self, field, value):
        self.values[field] = value

    def is_persisted(self):
        return self._original is not None

    def original(self):
        if self._original is None:
            return {}
        return dict(self._original)

    def current(self, field):
        return self.values.get(field)

    def assign(self, field, value):
        self.values[field] = value

    def save(self):
        if self.is_persisted() and self.store is not None:
            save_history(self, self.store)
        self._sync_original()
        logger.debug('DictEntity.save: %s %s', self.policy.table_name,
                self.identifier())

    def __repr__(self):
        return '<DictEntity %s %s>' % (self.policy.table_name, self.values)
