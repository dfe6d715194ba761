import logging
from collections.abc import Mapping
from copy import copy

from sqlalchemy import inspect

from .bag import ModelPropertyBags
from . import handlers
from .build import ResultBuilder
from .exc import InvalidFilterError
from .pipeline import Pipeline
from .util import AggregateSettingsHandler, DEFAULT_AGGREGATE_OPTIONS, merge_options, rewrite_id

logger = logging.getLogger(__name__)


class AggregateQuery:
    """ LoopBack-style filters, executed as MongoDB aggregations """

    # The class to use for getting structural data from a model
    _MODEL_PROPERTY_BAGS_CLS = ModelPropertyBags

    # The class that builds entities
    _RESULT_BUILDER_CLS = ResultBuilder

    # The class that loads related entities for `include`
    _INCLUDE_RESOLVER_CLS = handlers.IncludeResolver

    #: Names of the settings that are consumed by AggregateQuery itself, not by handlers
    OPTION_NAMES = frozenset(DEFAULT_AGGREGATE_OPTIONS.keys())

    def __init__(self, model, settings=None):
        """ Init an aggregate query

        :param model: SqlAlchemy model to make pipelines for. Its table name is the name of the collection.
        :type model: sqlalchemy.ext.declarative.DeclarativeMeta
        :param settings: Settings for filter handlers, and the defaults for aggregate() options.
            These are just plain kwargs names for every handler object's __init__ method.
            Note that you don't have to specify which object receives which kwarg:
            the `AggregateSettingsHandler` object does that automatically.

            To disable a handler, use `<handler-name>_enabled=False`.
            See AggregateSettingsDict for the list of all settings.
        :type settings: dict | mongopipe.AggregateSettingsDict
        """
        # Aliases?
        if inspect(model).is_aliased_class:
            raise AssertionError('AggregateQuery does not accept aliases')

        # Init with the model
        self._model = model
        self._bags = self._MODEL_PROPERTY_BAGS_CLS.for_model(self._model)

        # Initialize the settings
        self._settings = self._init_settings(settings or {})

        #: Default options for aggregate(), taken from the settings
        self._default_options = {name: self._settings.settings[name]
                                 for name in self.OPTION_NAMES
                                 if name in self._settings.settings}

        # Initialized later
        self._database = None

        # Get ready: filter handlers
        self._init_filter_handlers()

    def __copy__(self):
        """ AggregateQuery can be reused: copy() gives you an object with the same settings """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)

        # Copy filter handlers
        for name in self.HANDLER_ATTR_NAMES:
            setattr(result, name, copy(getattr(result, name)))

        return result

    def with_database(self, database):
        """ Execute pipelines on the given database

        :param database: A pymongo database: `database[collection_name]` should give a collection
        :type database: pymongo.database.Database
        """
        self._database = database
        return self

    @property
    def model(self):
        return self._model

    @property
    def bags(self) -> ModelPropertyBags:
        return self._bags

    def compile(self, filter=None) -> Pipeline:
        """ Compile a filter into a pipeline

        The filter is not modified. The same filter always gives the same pipeline.

        :param filter: A filter object (see `mongopipe.handlers`), or a list of stages
        :type filter: dict | list | None
        :raises InvalidFilterError: unknown filter sections provided (extra keys)
        :raises InvalidFilterError: syntax error in any of the filter sections
        :raises InvalidStageError: a stage does not have exactly one key
        :raises DisabledError: input was given to a disabled handler
        :rtype: Pipeline
        """
        pipeline = self._init_pipeline()

        # A list of stages: use as is
        if isinstance(filter, (list, tuple)):
            return pipeline.append(list(filter))

        if filter is None:
            filter = {}
        if not isinstance(filter, Mapping):
            raise InvalidFilterError('Filter must be an object, or a list of stages; got {}'
                                     .format(type(filter).__name__))

        # Every compilation uses fresh handlers
        filter_handlers = [(name, copy(handler)) for name, handler in self._handlers()]

        # Prepare the filter
        filter = dict(filter)
        for handler_name, handler in filter_handlers:
            filter = handler.input_prepare_filter(filter)

        # Check if filter keys are all right
        invalid_keys = set(filter.keys()) - self.HANDLER_NAMES - self.OTHER_FILTER_NAMES
        if invalid_keys:
            raise InvalidFilterError('Unknown filter sections: {}'.format(', '.join(sorted(invalid_keys))))

        # Process every section with its handler
        # Every handler should be invoked because they may have defaults even when no input was provided
        for handler_name, handler in filter_handlers:
            handler.with_aggregate_query(self)

            input_value = filter.get(handler_name, None)

            # Disabled handlers exception
            # But only test that if there actually was any input
            if input_value is not None:
                self._raise_if_handler_is_not_enabled(handler_name)

            handler.input(input_value)

        # Stages
        for handler_name, handler in filter_handlers:
            handler.alter_pipeline(pipeline)

        return pipeline

    def run(self, pipeline: Pipeline) -> list:
        """ Execute a pipeline on the collection of the model

        :return: Documents, with `_id` renamed to the model's identifier field
        """
        if self._database is None:
            raise AssertionError('AggregateQuery({}) has no database. Use with_database()'
                                 .format(self._bags.model_name))

        collection_name = self._bags.collection_name
        logger.debug('Exec pipeline on %r: %r, options: %r', collection_name, pipeline.stages, pipeline.options)

        cursor = pipeline.exec(self._database[collection_name])
        documents = [rewrite_id(doc, self._bags.pk) for doc in cursor]

        logger.debug('Fetched %d documents from %r', len(documents), collection_name)
        return documents

    def get_options(self, **options) -> dict:
        """ Get the options for aggregate(): defaults, settings, and these `options` merged together

            :raises TypeError: unknown option
        """
        invalid_options = set(options) - self.OPTION_NAMES
        if invalid_options:
            raise TypeError('Unknown aggregate() options: {}'.format(', '.join(sorted(invalid_options))))

        options = merge_options(DEFAULT_AGGREGATE_OPTIONS, self._default_options, options)

        # Explaining does not give documents
        if (options['mongodb_args'] or {}).get('explain'):
            options['build'] = False
        return options

    def aggregate(self, filter=None, **options):
        """ Run a filter, build entities

        :param filter: A filter object, or a list of stages
        :param build: Build entities from documents. Default: True
        :param build_options: `notify` (bool): invoke 'loaded' observers; `fail_fast` (bool)
        :param mongodb_args: Options for the `aggregate` command. `explain` disables `build`.
        :return: A list of entities.
            With build=False: (documents, build), where `build(documents)` gives entities later.
        """
        options = self.get_options(**options)

        # Pipeline
        pipeline = self.compile(filter)
        if options['mongodb_args']:
            pipeline.set_options(options['mongodb_args'])

        # Execute
        documents = self.run(pipeline)

        # Build
        build_options = options['build_options']
        if options['build']:
            return self.build_result(documents, filter, build_options)
        else:
            return documents, lambda documents: self.build_result(documents, filter, build_options)

    def which_fields_are_relational(self, where) -> list:
        """ Get the `where` keys that reference a relation """
        return self.handler_where.which_fields_are_relational(where)

    def build_result(self, documents: list, filter=None, options: dict = None) -> list:
        """ Build entities from documents

        :param documents: Documents, with domain field names
        :param filter: The filter the documents were fetched with
        :param options: Build options
        """
        options = merge_options(DEFAULT_AGGREGATE_OPTIONS['build_options'],
                                self._default_options.get('build_options'),
                                options)
        return self._init_result_builder().build_result(documents, filter, options)

    def build_result_item(self, document, filter=None):
        """ Build one entity from a document. Neither observers nor includes are involved. """
        return self._init_result_builder().build_result_item(document, filter)

    def __repr__(self):
        return 'AggregateQuery({})'.format(str(self._model))

    # region Filter handlers

    # This section initializes every filter handler, one per section.
    # Doing it this way enables you to override the way they are initialized, and use a custom query class with
    # custom settings.

    _FILTER_HANDLER_NEAR = handlers.AggregateNear
    _FILTER_HANDLER_WHERE = handlers.AggregateWhere
    _FILTER_HANDLER_AGGREGATE = handlers.AggregateStages
    _FILTER_HANDLER_FIELDS = handlers.AggregateFields
    _FILTER_HANDLER_ORDER = handlers.AggregateOrder
    _FILTER_HANDLER_LIMIT = handlers.AggregateLimit
    _FILTER_HANDLER_POSTAGGREGATE = handlers.AggregatePostStages

    HANDLER_NAMES = frozenset(('near',
                               'where',
                               'aggregate',
                               'fields',
                               'order',
                               'limit',
                               'postAggregate'))
    HANDLER_ATTR_NAMES = frozenset('handler_' + name
                                   for name in HANDLER_NAMES)

    #: Filter sections that are not handled by the pipeline
    OTHER_FILTER_NAMES = frozenset(('include',))

    def _handlers(self):
        """ Get the list of all (handler_name, handler) """
        return (
            # The ordering of these handlers is the order of the stages in the pipeline.
            # 'skip' and 'offset' are handled by 'limit'
            ('near', self.handler_near),
            ('where', self.handler_where),
            ('aggregate', self.handler_aggregate),
            ('fields', self.handler_fields),
            ('order', self.handler_order),
            ('limit', self.handler_limit),
            ('postAggregate', self.handler_postAggregate),
        )

    # for IDE completion
    handler_near = None  # type: mongopipe.handlers.AggregateNear
    handler_where = None  # type: mongopipe.handlers.AggregateWhere
    handler_aggregate = None  # type: mongopipe.handlers.AggregateStages
    handler_fields = None  # type: mongopipe.handlers.AggregateFields
    handler_order = None  # type: mongopipe.handlers.AggregateOrder
    handler_limit = None  # type: mongopipe.handlers.AggregateLimit
    handler_postAggregate = None  # type: mongopipe.handlers.AggregatePostStages

    def _init_filter_handlers(self):
        """ Initialize every filter handler """
        for name in self.HANDLER_NAMES:
            # Every handler: name, attr, class
            handler_attr_name = 'handler_' + name
            handler_cls_attr_name = '_FILTER_HANDLER_' + name.upper()
            handler_cls = getattr(self, handler_cls_attr_name)

            # Use _init_handler()
            setattr(self, handler_attr_name,
                    self._init_handler(name, handler_cls)
                    )

        # Check settings
        self._settings.raise_if_invalid_handler_settings(self)

    def _init_handler(self, handler_name, handler_cls):
        """ Init a handler, and load its settings """
        handler_settings = self._settings.get_settings(handler_name, handler_cls)
        return handler_cls(self._model, self._bags, **handler_settings)

    # endregion

    # region Internals

    def _init_settings(self, settings):
        """ Initialize: settings """
        return AggregateSettingsHandler(dict(settings), other_known_keys=self.OPTION_NAMES)

    def _init_pipeline(self) -> Pipeline:
        """ Get a new pipeline to put the stages into """
        return Pipeline()

    def _init_result_builder(self) -> ResultBuilder:
        """ Get an object that builds entities, and loads their related entities """
        include_resolver = self._INCLUDE_RESOLVER_CLS(self._database, self._get_nested_aggregate_query)
        return self._RESULT_BUILDER_CLS(self._model, self._bags, include_resolver=include_resolver)

    def _get_nested_aggregate_query(self, model) -> 'AggregateQuery':
        """ Get an AggregateQuery for a related model

            Models that have their own settings (see MongoPipeBase.mongopipe_configure()) use them.
        """
        if hasattr(model, 'mongopipe'):
            return model.mongopipe()
        return self.__class__(model)

    def _raise_if_handler_is_not_enabled(self, handler_name):
        """ Raise an error if a handler is not enabled. """
        self._settings.raise_if_not_handler_enabled(self._bags.model_name, handler_name)

    # endregion
