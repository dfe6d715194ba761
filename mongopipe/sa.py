from copy import copy
from typing import Callable

from .hooks import ModelObservers
from .query import AggregateQuery


class MongoPipeBase:
    """ Mixin for SqlAlchemy models that provides the .aggregate() method for convenience """

    # Override this method in your subclass in order to be able to configure MongoPipe on a per-model basis!
    @classmethod
    def _init_mongopipe(cls, settings: dict = None) -> AggregateQuery:
        """ Get a reusable AggregateQuery object. Is only invoked once.

            Override this method in order to initialize AggregateQuery they way you need.
            For example, you might want to pass `settings` dict to it.

            But for now, you can only use `mongopipe_configure()` on it.
        """
        return AggregateQuery(cls, settings)

    __mongopipe_per_class_cache = {}

    @classmethod
    def _get_mongopipe(cls) -> AggregateQuery:
        """ Get a copy of the AggregateQuery for this model ; initialize it only once """
        try:
            # We want every model class to have its own AggregateQuery,
            # and we want no one to inherit it.
            aq = cls.__mongopipe_per_class_cache[cls]
        except KeyError:
            cls.__mongopipe_per_class_cache[cls] = aq = cls._init_mongopipe()

        # Return a copy
        return copy(aq)

    @classmethod
    def mongopipe_configure(cls, settings: dict) -> AggregateQuery:
        """ Initialize this models' AggregateQuery settings and make it permanent.

            :param settings: a dict of settings. See AggregateSettingsDict
        """
        cls.__mongopipe_per_class_cache[cls] = aq = cls._init_mongopipe(settings)
        return aq

    @classmethod
    def mongopipe(cls, database=None) -> AggregateQuery:
        """ Get an AggregateQuery for this model

        :param database: The database to run aggregations on. Can be given later, with with_database()
        :type database: pymongo.database.Database | None
        """
        return cls._get_mongopipe().with_database(database)

    @classmethod
    def aggregate(cls, database, filter=None, **options):
        """ Run a filter on the collection of this model

        See: AggregateQuery.aggregate()
        """
        return cls.mongopipe(database).aggregate(filter, **options)

    @classmethod
    def which_fields_are_relational(cls, where) -> list:
        """ Get the `where` keys that reference a relation """
        return cls._get_mongopipe().which_fields_are_relational(where)

    @classmethod
    def build_result(cls, documents: list, filter=None, options: dict = None, database=None) -> list:
        """ Build entities from documents

        :param database: Only needed for `include`
        """
        return cls.mongopipe(database).build_result(documents, filter, options)

    @classmethod
    def build_result_item(cls, document, filter=None):
        """ Build one entity from a document """
        return cls._get_mongopipe().build_result_item(document, filter)

    @classmethod
    def observe(cls, operation: str, fn: Callable = None):
        """ Register an observer for an operation on this model

            Can be used as a decorator:

                @Person.observe('loaded')
                def on_loaded(ctx):
                    ...
        """
        observers = ModelObservers.for_model(cls)
        if fn is None:
            return lambda fn: observers.observe(operation, fn)
        return observers.observe(operation, fn)
