'''Record versioning: change detection, history capture and restore.

The operations here are independent of any particular ORM or database. They
work with two collaborators:

  * a HistoryEntity: adapter around one entity (record) exposing its
    VersioningPolicy, its last persisted ("original") field values, its
    current values and a way to save it.
  * a HistoryStore: resolves (named) connections to handles whose tables
    support ``insert(row)`` and ``query()``.

Queries returned by ``table.query()`` are builders supporting::

    where(field, op, value)        op in OPERATORS
    where_null(field)
    where_date(field, op, date)    compare calendar dates only
    where_any(group, group, ...)   OR of groups, each a callable on a builder
    order_by_desc(field)
    skip(n)
    first() / all() / count()

See vhistory.memory and vhistory.sqlalchemy.store for implementations.

History rows are written from the *original* values, so a history row holds
the state that a save replaced. Restoring is itself a tracked change: saving
the restored entity writes a history row of the state being overwritten.
'''
import datetime
import operator
import logging
logger = logging.getLogger('vhistory')

OPERATORS = {
    '=': operator.eq,
    '==': operator.eq,
    '!=': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}


def get_operator(op):
    try:
        return OPERATORS[op]
    except KeyError:
        raise ValueError('Unsupported comparison operator: %r' % op)


class HistoryEntity(object):
    '''Adapter between an entity and the history operations.

    Subclasses must set ``policy`` and implement ``original``, ``current``,
    ``assign`` and ``save``.
    '''
    policy = None

    def original(self):
        '''Mapping of field name to last persisted value.

        Only declared fields which have been persisted appear. An entity that
        was never persisted has no original values.
        '''
        raise NotImplementedError

    def current(self, field):
        raise NotImplementedError

    def assign(self, field, value):
        raise NotImplementedError

    def save(self):
        raise NotImplementedError

    def identifier(self):
        return self.current(self.policy.key_name)


class HistoryStore(object):
    '''Resolves connection names to store handles.

    ``connection(None)`` must return the default connection.
    '''

    def connection(self, name=None):
        raise NotImplementedError


def resolve_connection(entity, connection=None):
    '''Entity's own connection, else the explicit override, else default.'''
    return entity.policy.connection or connection


def normalize_cutoff(value):
    '''Turn a date, datetime or ISO 8601 string into a calendar date.'''
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        return datetime.datetime.fromisoformat(value.strip()).date()
    raise ValueError('Cannot use %r as a restore cutoff' % (value,))


## --------------------------------------------------------
## Diff detection and history writing

def has_tracked_changes(entity):
    policy = entity.policy
    original = entity.original()
    for field, value in original.items():
        if not policy.is_tracked(field):
            continue
        if entity.current(field) != value:
            return True
    return False


def build_snapshot(entity):
    '''Original tracked values with the identifier renamed to the history
    foreign key.
    '''
    policy = entity.policy
    original = entity.original()
    snapshot = dict((field, value) for field, value in original.items()
            if policy.is_tracked(field))
    snapshot[policy.model_id_reference] = original[policy.key_name]
    snapshot.pop(policy.key_name, None)
    return snapshot


def save_history(entity, store, connection=None):
    '''Append the pre-change state of entity to its history table.

    Call immediately before persisting an update. Nothing is written when no
    tracked field changed.

    :return: the written snapshot or None.
    '''
    if not has_tracked_changes(entity):
        logger.debug('save_history: no tracked change on %s %s',
                entity.policy.table_name, entity.identifier())
        return None
    snapshot = build_snapshot(entity)
    handle = store.connection(resolve_connection(entity, connection))
    handle.table(entity.policy.history_table).insert(snapshot)
    logger.debug('save_history: %s <- %s', entity.policy.history_table,
            snapshot)
    return snapshot


## --------------------------------------------------------
## Fetching history

def history_query(entity, store, connection=None):
    '''Query over all history records of this entity.'''
    policy = entity.policy
    handle = store.connection(resolve_connection(entity, connection))
    query = handle.table(policy.history_table).query()
    return query.where(policy.model_id_reference, '=', entity.identifier())


def before_date(cutoff):
    '''Most recent record last changed before the calendar date of cutoff.

    updated_at is used when set, created_at otherwise.
    '''
    cutoff = normalize_cutoff(cutoff)

    def predicate(query, policy):
        return query.where_any(
            lambda q: q.where_date(policy.updated_field, '<', cutoff),
            lambda q: q.where_null(policy.updated_field).where_date(
                policy.created_field, '<', cutoff),
            ).order_by_desc(policy.history_key)
    return predicate


def previous_iteration(index=0):
    '''The index-th most recent record (0 is the most recent).'''
    if index < 0:
        raise ValueError('History index must not be negative: %s' % index)

    def predicate(query, policy):
        return query.order_by_desc(policy.history_key).skip(index)
    return predicate


def fetch_history_record(entity, store, predicate, connection=None):
    '''Return the first history record matching predicate or None.'''
    query = predicate(history_query(entity, store, connection), entity.policy)
    record = query.first()
    logger.debug('fetch_history_record: %s %s -> %s',
            entity.policy.table_name, entity.identifier(), record)
    return record


def get_histories(entity, store, connection=None):
    '''All history records of entity, most recent first.'''
    query = history_query(entity, store, connection)
    return query.order_by_desc(entity.policy.history_key).all()


def count_histories(entity, store, connection=None):
    return history_query(entity, store, connection).count()


## --------------------------------------------------------
## Restoring

def restore_from_history(entity, record):
    '''Copy the values of a history record onto entity and save it.

    The history row id and foreign key are not copied. If saving fails the
    values already assigned stay on the in-memory entity.
    '''
    policy = entity.policy
    skipped = (policy.history_key, policy.model_id_reference)
    for field, value in record.items():
        if field in skipped:
            continue
        entity.assign(field, value)
    logger.debug('restore_from_history: %s %s from %s', policy.table_name,
            entity.identifier(), record.get(policy.history_key))
    entity.save()


def _restore(entity, store, predicate, connection):
    record = fetch_history_record(entity, store, predicate, connection)
    if record is None:
        return False
    restore_from_history(entity, record)
    return True


def restore_before_date(entity, store, cutoff, connection=None):
    '''Restore entity to how it was before the day of cutoff.

    :return: False if there is no such history record.
    '''
    return _restore(entity, store, before_date(cutoff), connection)


def restore_previous_iteration(entity, store, index=0, connection=None):
    '''Restore entity to its index-th most recent history record.

    :return: False if there are fewer than index + 1 history records.
    '''
    return _restore(entity, store, previous_iteration(index), connection)


def restore_previous(entity, store, connection=None):
    return restore_previous_iteration(entity, store, 0, connection)
