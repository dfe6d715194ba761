"""
### Include Operation

`include` loads related entities for every entity in the result.
Unlike `where`, it does not $lookup anything: the related entities are loaded with a separate query
per relation, once for the whole batch, and then attached to every entity.

#### Syntax

* String syntax: relation names, separated by whitespace

    ```python
    {'include': 'company tags'}
    ```

* Array syntax: a list of includes

    ```python
    {'include': ['company', 'tags']}
    ```

* Object syntax: a relation with a nested include

    ```python
    {'include': {'company': 'city'}}
    ```

* Scope syntax: a relation with a filter for the related entities.
    The scope supports `where`, `fields`, `order`, `limit`, `skip`, and a nested `include`.

    ```python
    {'include': {'relation': 'tags', 'scope': {'where': {'name': {'like': '^a'}}, 'order': 'name'}}}
    ```

Note that `limit` in a scope limits the related entities for the whole batch, not per entity.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping
from typing import List, NamedTuple, Optional

from .fields import AggregateFields
from ..bag import ModelPropertyBags, Relation
from ..exc import InvalidFilterError, InvalidRelationError
from ..pipeline import Pipeline

logger = logging.getLogger(__name__)


class IncludeParams(NamedTuple):
    """ A normalized include: the name of the relation, and the filter for the related entities """
    relation_name: str
    scope: dict


def normalize_include(include) -> List[IncludeParams]:
    """ Normalize the `include` into a list of IncludeParams

        :type include: None | str | list | dict
        :raises InvalidFilterError: invalid input
    """
    if not include:
        return []

    # String syntax
    if isinstance(include, str):
        return [IncludeParams(name, {}) for name in include.replace(',', ' ').split()]

    # Array syntax
    if isinstance(include, (list, tuple)):
        return [params
                for item in include
                for params in normalize_include(item)]

    if isinstance(include, Mapping):
        # Scope syntax
        if 'relation' in include:
            scope = include.get('scope') or {}
            if not isinstance(include['relation'], str) or not isinstance(scope, Mapping):
                raise InvalidFilterError('`include` must be {{relation: name, scope: {{...}}}}; got {!r}'.format(include))
            return [IncludeParams(include['relation'], dict(scope))]

        # Object syntax
        return [IncludeParams(name, {} if nested is None or nested is True else {'include': nested})
                for name, nested in include.items()]

    raise InvalidFilterError('`include` must be a string, a list, or an object; got {!r}'.format(include))


class IncludeResolver:
    """ Load related entities for a batch of documents

        For every include, runs one query on the related model, and distributes the results
        among the documents by the relation keys.
    """

    def __init__(self, database, query_factory):
        """ Init the resolver

        :param database: The database to load related entities from
        :param query_factory: callable(model) -> AggregateQuery, for the related models
        """
        self.database = database
        self.query_factory = query_factory

    def resolve(self, model, documents: list, include, options: dict) -> List[Optional[dict]]:
        """ Load related entities for every document

        :param model: The model the documents belong to
        :param documents: Documents, with domain field names (after rewrite_id())
        :param include: The `include` from the filter
        :param options: Build options, used for the related entities as well
        :return: A list of relation caches, one per document: {relation name: entity | list | None}
        :raises InvalidRelationError: Unknown relation name
        """
        bags = ModelPropertyBags.for_model(model)
        caches = [{} for _ in documents]

        for params in normalize_include(include):
            relation = bags.relations.get(params.relation_name)
            if relation is None:
                raise InvalidRelationError(bags.model_name, params.relation_name, 'include')
            self._resolve_relation(relation, documents, caches, params.scope, options)

        return caches

    def _resolve_relation(self, relation: Relation, documents: list, caches: list, scope: dict, options: dict):
        """ Load one relation for every document, put the results into `caches` """
        keys = _unique(doc.get(relation.key_from) for doc in documents if doc)

        # Related entities, grouped by the key the documents refer to
        if not keys:
            related = {}
        elif relation.is_through:
            related = self._load_through(relation, keys, scope, options)
        else:
            related = self._group_by(self._load(relation.model_to, relation.key_to, keys, scope, options),
                                     relation.key_to)

        for doc, cache in zip(documents, caches):
            items = related.get(doc.get(relation.key_from), []) if doc else []
            if relation.is_single:
                cache[relation.name] = items[0] if items else None
            else:
                cache[relation.name] = list(items)

    def _load(self, model, key: str, keys: list, scope: dict, options: dict) -> list:
        """ Load entities of `model` whose `key` is one of `keys`, with the scope applied """
        # The scope's own condition on the key is AND-ed
        where = dict(scope.get('where') or {})
        if key in where:
            where['and'] = list(where.get('and') or ()) + [{key: where.pop(key)}]
        where[key] = {'inq': keys}

        nested_filter = dict(scope, where=where)

        # The key has to be loaded: it's used for grouping
        fields = AggregateFields.normalize_fields(scope.get('fields'))
        if fields:
            if any(fields.values()):
                fields[key] = True
            else:
                fields.pop(key, None)
            nested_filter['fields'] = fields

        logger.debug('Include: loading %s where %s in %d keys', model.__name__, key, len(keys))
        query = self.query_factory(model).with_database(self.database)
        return query.aggregate(nested_filter, build=True, build_options=options)

    def _load_through(self, relation: Relation, keys: list, scope: dict, options: dict) -> dict:
        """ Load entities through an intermediate collection """
        # The intermediate documents: source key -> target keys
        pipeline = Pipeline().match({relation.native_key_to: {'$in': keys}})
        links = list(pipeline.exec(self.database[relation.through]))
        target_keys_by_source_key = defaultdict(list)
        for link in links:
            target_keys_by_source_key[link.get(relation.key_to)].append(link.get(relation.key_through))

        # The targets
        target_keys = _unique(link.get(relation.key_through) for link in links)
        if not target_keys:
            return {}
        targets = self._group_by(self._load(relation.model_to, relation.key_target, target_keys, scope, options),
                                 relation.key_target)

        # Regroup by the source key, keeping the order of the targets
        result = {}
        for source_key, target_keys in target_keys_by_source_key.items():
            wanted = set(target_keys)
            result[source_key] = [entity
                                  for target_key, entities in targets.items()
                                  if target_key in wanted
                                  for entity in entities]
        return result

    @staticmethod
    def _group_by(entities: list, key: str) -> dict:
        """ Group entities by the value of an attribute. The order is preserved. """
        groups = defaultdict(list)
        for entity in entities:
            groups[getattr(entity, key)].append(entity)
        return groups


def _unique(values) -> list:
    """ Unique non-None values, in their original order """
    return list({v: None for v in values if v is not None})
