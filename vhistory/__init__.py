'''
About
=====

vhistory keeps the history of your records: whenever a tracked field of a
record changes, the values it had before the change are archived in a
companion history table, and the record can later be restored to any of
those snapshots, either by date or by how many changes ago it was.

It is provided as a small ORM-agnostic core plus an extension for
SQLAlchemy.


Copyright and License
=====================

Licensed under the MIT license:

  <http://www.opensource.org/licenses/mit-license.php>


Concepts
========

  * Entity: a persisted record whose changes are tracked.
  * Tracked field: any declared field of the entity not listed in its
    ignored fields.
  * History record: append-only row holding an entity's tracked values
    *before* a change. The entity identifier is stored under the history
    foreign key (e.g. ``article_id``), never under its own name. Row ids
    increase with every write, so ordering by row id descending gives the
    most recent change first.
  * Restore: copy a history record back onto the entity and save it. As a
    restore is itself a change, saving writes a history record of the state
    being replaced.

For a table ``articles`` with primary key ``id`` the defaults are::

    history table:       article_histories
    history foreign key: article_id

The history table must provide a row id column (``id``), the foreign key
column and one column per tracked field, optionally ``created_at`` and
``updated_at``. Creating it is up to your migrations.


Code in Action
==============

With SQLAlchemy::

    from vhistory.sqlalchemy import versioned, listen, restore_previous

    @versioned(ignored_fields=['views'])
    class Article(Base):
        __tablename__ = 'articles'
        ...

    listen(Session)

    article.title = 'War and Peace'
    Session.commit()            # archives the old title
    restore_previous(article)   # and puts it back

See also::

    vhistory/sqlalchemy/demo.py
    vhistory/memory.py
'''
__version__ = '0.1'
__description__ = 'Record history and restore for versioned entities.'
