"""
### Building entities

Documents fetched from MongoDB become instances of your models:

* They are made without calling `__init__()`: no setters, no validators, no history.
* They are marked as persisted (*detached*): they did come from the database, after all.
  Documents without an identifier (e.g. the output of `$group`) can't be persisted entities: they stay *transient*.
* Fields that were not projected remain *unloaded*; so do relations that were not included.
* Included relations are attached as if they were loaded by SqlAlchemy:
  a list of entities for *many* relations, an entity (or `None`) for *one* relations.
* Fields that are not columns (e.g. computed by a custom `$group` stage) are set as plain attributes.
"""

import logging
from collections.abc import Mapping
from typing import Optional

from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.orm.session import make_transient_to_detached

from .bag import ModelPropertyBags
from .exc import HydrationError, HydrationBatchError
from .handlers.fields import AggregateFields
from .handlers.include import normalize_include
from .hooks import ModelObservers, HookContext

logger = logging.getLogger(__name__)


class ResultBuilder:
    """ Builds model instances from documents """

    def __init__(self, model, bags: ModelPropertyBags = None, include_resolver=None):
        """ Init the builder

        :param model: The model to build entities of
        :param bags: Model bags
        :param include_resolver: The object that loads related entities; only needed with `include`
        :type include_resolver: mongopipe.handlers.include.IncludeResolver
        """
        self.model = model
        self.bags = bags or ModelPropertyBags.for_model(model)
        self.include_resolver = include_resolver

    def build_result(self, documents: list, filter: Mapping = None, options: dict = None) -> list:
        """ Build entities from a batch of documents

        :param documents: Documents, with domain field names (after rewrite_id())
        :param filter: The filter the documents were fetched with: `fields` and `include` are used
        :param options: Build options: `notify` (bool), `fail_fast` (bool)
        :return: Entities, in the original order. Documents that gave no entity are dropped.
        :raises HydrationError: a document can't become an entity (fail_fast=True)
        :raises HydrationBatchError: some documents couldn't become entities (fail_fast=False)
        """
        filter = filter if isinstance(filter, Mapping) else {}
        options = options or {}
        notify = options.get('notify', True)
        fail_fast = options.get('fail_fast', True)

        # Related entities: loaded once for the whole batch
        include = filter.get('include')
        if include:
            if self.include_resolver is None:
                raise AssertionError('Cannot include relations without an include resolver')
            relation_caches = self.include_resolver.resolve(self.model, documents, include, options)
        else:
            relation_caches = [None] * len(documents)

        observers = ModelObservers.for_model(self.model)
        hook_state = {}

        entities, errors = [], []
        for index, (document, relation_cache) in enumerate(zip(documents, relation_caches)):
            # Observers
            if notify:
                context = observers.notify('loaded', HookContext(self.model, document,
                                                                 is_new_instance=False,
                                                                 hook_state=hook_state,
                                                                 options=options))
                document = context.data

            # Build
            try:
                entity = self.build_result_item(document, filter, relation_cache=relation_cache, index=index)
            except HydrationError as e:
                if fail_fast:
                    raise
                errors.append(e)
                continue

            if entity is not None:
                entities.append(entity)

        if errors:
            raise HydrationBatchError(self.bags.model_name, errors, entities)

        logger.debug('Built %d %s entities', len(entities), self.bags.model_name)
        return entities

    def build_result_item(self, document: Optional[Mapping], filter: Mapping = None,
                          relation_cache: dict = None, index: int = None):
        """ Build one entity

        :param document: The document. `None` gives no entity.
        :param filter: The filter: `fields` and `include` are used
        :param relation_cache: Related entities loaded for this document: {relation name: value}
        :param index: Position of the document in the batch; for error reporting
        :return: The entity, or None
        :raises HydrationError: the document can't become an entity
        """
        if document is None:
            return None
        if not isinstance(document, Mapping):
            raise HydrationError(self.bags.model_name, document, 'not an object', index)

        filter = filter if isinstance(filter, Mapping) else {}

        # Relations are only built through `include`
        data = {key: value
                for key, value in document.items()
                if key not in self.bags.relations}

        # Validate
        for key in data:
            if not isinstance(key, str) or '.' in key or key.startswith('$'):
                raise HydrationError(self.bags.model_name, document, 'invalid field name: {!r}'.format(key), index)
            if key not in self.bags.columns and hasattr(self.model, key):
                raise HydrationError(self.bags.model_name, document,
                                     'field {!r} would shadow an attribute of the model'.format(key), index)

        # Fields
        is_included = self._field_filter(filter.get('fields'), self.bags.pk)

        # Make an instance, no __init__()
        entity = self.bags.mapper.class_manager.new_instance()
        for key, value in data.items():
            if not is_included(key):
                continue
            if key in self.bags.columns:
                set_committed_value(entity, key, value)
            else:
                setattr(entity, key, value)

        # It came from the database.
        # Documents without an identifier (projected away, or made by $group) have no identity: they stay transient
        pk = self.bags.pk
        if is_included(pk) and data.get(pk) is not None:
            make_transient_to_detached(entity)

        # Promote included relations
        if relation_cache:
            for params in normalize_include(filter.get('include')):
                if params.relation_name in relation_cache:
                    self._set_relation(entity, params.relation_name, relation_cache[params.relation_name])

        return entity

    def _set_relation(self, entity, relation_name: str, value):
        """ Attach related entities to an entity, as if they were loaded """
        relation = self.bags.relations[relation_name]
        target_builder = None

        def as_entity(v):
            nonlocal target_builder
            if isinstance(v, Mapping):
                target_builder = target_builder or ResultBuilder(relation.model_to)
                return target_builder.build_result_item(v)
            return v

        if relation.is_single:
            value = as_entity(value)
        else:
            value = [e for e in map(as_entity, value or ()) if e is not None]

        set_committed_value(entity, relation_name, value)

    @staticmethod
    def _field_filter(fields, pk: str):
        """ Get a function that tells whether a field is to be set on an entity

            Like MongoDB, the inclusion mode keeps the identifier unless it's excluded explicitly.
        """
        projection = AggregateFields.normalize_fields(fields)
        if not projection:
            return lambda name: True

        # Include mode
        if any(projection.values()):
            included = {name for name, v in projection.items() if v}
            if projection.get(pk, True):
                included.add(pk)
            return lambda name: name in included
        # Exclude mode
        else:
            excluded = set(projection)
            return lambda name: name not in excluded
