from datetime import date, datetime
import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger('vhistory')

import pytest
from sqlalchemy import Column, Integer, String, event, select
from sqlalchemy.orm import declarative_base

import vhistory.sqlalchemy
from vhistory.sqlalchemy import SQLAlchemyEntity, make_versioned
from vhistory.sqlalchemy.demo import Article, Entity, Tag, Session, repo, engine, \
        article_history_table, entity_history_table


def history_rows(table):
    statement = select(table).order_by(table.c.id)
    # read through the connection so that pending changes are not flushed
    rows = Session.connection().execute(statement).mappings().all()
    return [dict(row) for row in rows]


def without_id(rows):
    return [dict((k, v) for k, v in row.items() if k != 'id') for row in rows]


class TestScenario:
    '''Entity 7 created as A/x, renamed to B, then moved to status y.'''

    def setup_method(self):
        repo.rebuild_db()
        session = Session()
        entity = Entity(id=7, name='A', status='x')
        session.add(entity)
        session.commit()
        entity.name = 'B'
        session.commit()
        entity.status = 'y'
        session.commit()
        Session.remove()

    def teardown_method(self):
        Session.remove()

    def reload(self):
        Session.remove()
        entity = Session.get(Entity, 7)
        return (entity.name, entity.status)

    def test_history(self):
        rows = history_rows(entity_history_table)
        assert without_id(rows) == [
            {'entity_id': 7, 'name': 'A', 'status': 'x'},
            {'entity_id': 7, 'name': 'B', 'status': 'x'},
            ]
        assert rows[0]['id'] < rows[1]['id']

    def test_get_histories(self):
        entity = Session.get(Entity, 7)
        records = vhistory.sqlalchemy.get_histories(entity)
        assert [r['name'] for r in records] == ['B', 'A']

    def test_restore_most_recent(self):
        entity = Session.get(Entity, 7)
        assert vhistory.sqlalchemy.restore_previous_iteration(entity, 0)
        assert self.reload() == ('B', 'x')

    def test_restore_older(self):
        entity = Session.get(Entity, 7)
        assert vhistory.sqlalchemy.restore_previous_iteration(entity, 1)
        assert self.reload() == ('A', 'x')

    def test_offset_exhausted(self):
        entity = Session.get(Entity, 7)
        assert not vhistory.sqlalchemy.restore_previous_iteration(entity, 2)
        assert self.reload() == ('B', 'y')

    def test_restore_previous(self):
        entity = Session.get(Entity, 7)
        assert vhistory.sqlalchemy.restore_previous(entity)
        assert self.reload() == ('B', 'x')

    def test_restore_archives_outgoing_state(self):
        entity = Session.get(Entity, 7)
        vhistory.sqlalchemy.restore_previous_iteration(entity, 1)
        rows = history_rows(entity_history_table)
        assert len(rows) == 3
        assert without_id(rows)[-1] == \
                {'entity_id': 7, 'name': 'B', 'status': 'y'}

    def test_restore_before_date_without_timestamps(self):
        entity = Session.get(Entity, 7)
        with pytest.raises(ValueError) as err:
            vhistory.sqlalchemy.restore_before_date(entity, date(2024, 1, 5))
        assert 'updated_at' in str(err.value)


class TestReflectionCache:

    def setup_method(self):
        repo.rebuild_db()
        Session.add(Entity(id=1, name='A', status='x'))
        repo.commit()
        self.statements = []

    def teardown_method(self):
        if event.contains(engine, 'before_cursor_execute', self.record):
            event.remove(engine, 'before_cursor_execute', self.record)
        Session.remove()

    def record(self, conn, cursor, statement, parameters, context,
            executemany):
        self.statements.append(statement)

    def change_and_restore(self, name):
        entity = Session.get(Entity, 1)
        entity.name = name
        Session.commit()
        assert vhistory.sqlalchemy.restore_previous(entity)
        Session.remove()

    def test_history_table_reflected_once(self):
        self.change_and_restore('B')
        event.listen(engine, 'before_cursor_execute', self.record)
        self.change_and_restore('C')
        self.change_and_restore('D')
        assert self.statements
        assert [s for s in self.statements if 'PRAGMA' in s.upper()] == []
        rows = history_rows(entity_history_table)
        assert len(rows) == 6


class TestArticle:

    def setup_method(self):
        repo.rebuild_db()
        article = Article(title='one', notes=u'first notes')
        Session.add(article)
        repo.commit()
        self.article = Session.query(Article).one()

    def teardown_method(self):
        Session.remove()

    def test_new_object_no_history(self):
        assert history_rows(article_history_table) == []

    def test_no_change_no_write(self):
        self.article.title = self.article.title
        Session.commit()
        assert history_rows(article_history_table) == []

    def test_ignored_field_no_write(self):
        self.article.views = 10
        Session.commit()
        assert history_rows(article_history_table) == []

    def test_tracked_change(self):
        created = self.article.created_at
        self.article.title = 'two'
        self.article.views = 3
        Session.commit()
        rows = history_rows(article_history_table)
        assert len(rows) == 1
        row = rows[0]
        assert row['article_id'] == self.article.id
        assert row['title'] == 'one'
        assert row['body'] == u'first notes'
        assert row['created_at'] == created
        assert 'views' not in row

    def test_column_name_differs_from_attribute(self):
        self.article.notes = u'second notes'
        Session.commit()
        rows = history_rows(article_history_table)
        assert rows[0]['body'] == u'first notes'
        assert vhistory.sqlalchemy.restore_previous(self.article)
        Session.remove()
        assert Session.query(Article).one().notes == u'first notes'

    def test_deleted_object_no_history(self):
        Session.delete(self.article)
        Session.commit()
        assert history_rows(article_history_table) == []

    def test_history_disabled(self):
        Session().info['history_disabled'] = True
        self.article.title = 'two'
        Session.commit()
        assert history_rows(article_history_table) == []

    def test_rollback_discards_history(self):
        self.article.title = 'two'
        Session.flush()
        Session.rollback()
        assert history_rows(article_history_table) == []

    def test_explicit_save_history(self):
        Session().info['history_disabled'] = True
        self.article.title = 'two'
        snapshot = vhistory.sqlalchemy.save_history(self.article)
        assert snapshot['title'] == 'one'
        assert snapshot['article_id'] == self.article.id
        assert 'id' not in snapshot
        assert len(history_rows(article_history_table)) == 1
        # nothing changed relative to the original values again
        self.article.title = 'one'
        assert vhistory.sqlalchemy.save_history(self.article) is None


class TestRestoreBeforeDate:

    def setup_method(self):
        repo.rebuild_db()
        article = Article(title='now', created_at=datetime(2024, 2, 1),
                updated_at=datetime(2024, 2, 1))
        Session.add(article)
        repo.commit()
        self.article = Session.query(Article).one()

    def teardown_method(self):
        Session.remove()

    def insert(self, title, created_at, updated_at):
        Session.execute(article_history_table.insert().values(
            article_id=self.article.id, title=title, status='draft',
            created_at=created_at, updated_at=updated_at))
        Session.commit()

    def test_created_at_fallback(self):
        self.insert('old', datetime(2024, 1, 1, 23, 0), None)
        assert vhistory.sqlalchemy.restore_before_date(self.article,
                date(2024, 1, 5))
        Session.remove()
        assert Session.query(Article).one().title == 'old'

    def test_updated_at_wins_over_created_at(self):
        self.insert('old', datetime(2023, 1, 1), datetime(2024, 1, 10))
        assert not vhistory.sqlalchemy.restore_before_date(self.article,
                date(2024, 1, 5))
        Session.remove()
        assert Session.query(Article).one().title == 'now'

    def test_most_recent_match(self):
        self.insert('first', datetime(2024, 1, 1), None)
        self.insert('second', datetime(2024, 1, 1), datetime(2024, 1, 2))
        self.insert('third', datetime(2024, 1, 1), datetime(2024, 1, 9))
        assert vhistory.sqlalchemy.restore_before_date(self.article,
                '2024-01-05')
        Session.remove()
        article = Session.query(Article).one()
        assert article.title == 'second'
        assert article.updated_at == datetime(2024, 1, 2)

    def test_time_of_day_ignored(self):
        self.insert('same day', datetime(2024, 1, 5, 0, 1), None)
        assert not vhistory.sqlalchemy.restore_before_date(self.article,
                datetime(2024, 1, 5, 23, 59))


class TestMakeVersioned:

    def test_policy(self):
        policy = Article.__history_policy__
        assert policy.table_name == 'articles'
        assert policy.history_table == 'article_histories'
        assert policy.model_id_reference == 'article_id'
        assert policy.ignored_fields == frozenset(['views'])
        assert 'body' in policy.fields
        assert 'views' not in policy.tracked_fields
        assert Article.__history_attributes__['body'] == 'notes'

    def test_class_level_overrides(self):
        Base = declarative_base()

        class Document(Base):
            __tablename__ = 'documents'
            __history_table__ = 'document_audit'
            __history_connection__ = 'archive'
            __history_ignored_fields__ = ['hits']
            id = Column(Integer, primary_key=True)
            hits = Column(Integer)

        policy = make_versioned(Document, model_id_reference='doc')
        assert policy.history_table == 'document_audit'
        assert policy.model_id_reference == 'doc'
        assert policy.connection == 'archive'
        assert policy.ignored_fields == frozenset(['hits'])

    def test_composite_primary_key(self):
        Base = declarative_base()

        class Pair(Base):
            __tablename__ = 'pairs'
            left = Column(Integer, primary_key=True)
            right = Column(Integer, primary_key=True)
            name = Column(String(10))

        with pytest.raises(ValueError):
            make_versioned(Pair)

    def test_not_versioned(self):
        with pytest.raises(ValueError):
            SQLAlchemyEntity(Tag(name='geo'))
