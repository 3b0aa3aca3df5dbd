"""
Database router for the offline-first deployment.

Requests always read and write the local ``default`` database. The
``online`` alias is only touched explicitly via ``.using('online')`` by
the sync service, so the router never sends ordinary traffic there.
"""


class OfflineFirstRouter:
    def db_for_read(self, model, **hints):
        return 'default'

    def db_for_write(self, model, **hints):
        return 'default'

    def allow_relation(self, obj1, obj2, **hints):
        # Both aliases hold the same schema, rows are copied by primary key
        return True

    def allow_migrate(self, db, app_label, model_name=None, **hints):
        return True
