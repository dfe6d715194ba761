"""
### Relation Expander

When a `where` references the fields of a related model ('company.name'), MongoDB
has to bring the related documents into the pipeline first. This is done with `$lookup`:

```python
{'where': {'company.city.name': 'Paris'}}
```

becomes:

```python
[
    {'$lookup': {'from': 'companies', 'localField': 'company_id', 'foreignField': '_id', 'as': 'company'}},
    {'$unwind': {'path': '$company', 'preserveNullAndEmptyArrays': True}},
    {'$lookup': {'from': 'cities', 'localField': 'company.city_id', 'foreignField': '_id', 'as': 'company.city'}},
    {'$unwind': {'path': '$company.city', 'preserveNullAndEmptyArrays': True}},
]
```

Single-valued relations (belongsTo, hasOne) are unwound, so that the related document sits
right where a dot-notation path expects it. Documents that have no related document are kept.
"""

import logging
from typing import Mapping, Optional

from ..bag import ModelPropertyBags, Relation

logger = logging.getLogger(__name__)


def _qualify(parent_path: str, name: str) -> str:
    """ Prefix a field name with the path of the parent relation """
    return '{}.{}'.format(parent_path, name) if parent_path else name


class RelationExpander:
    """ Append $lookup stages for every relation that a `where` object references """

    def __init__(self, bags: ModelPropertyBags):
        """ Init the expander for the root model

        :param bags: Bags of the model the pipeline runs on
        """
        self.bags = bags

    def expand(self, pipeline, where: Mapping, parent_relation: Optional[Relation] = None, parent_path: str = ''):
        """ Append $lookup (and $unwind) stages for all relations referenced by `where`

        Every relation is joined once, no matter how many keys reference it.

        :param pipeline: The pipeline to append stages to
        :type pipeline: mongopipe.pipeline.Pipeline
        :param where: Relational `where`: {'relation.field': condition}, native paths
        :param parent_relation: When recursing: the relation whose target model the keys refer to
        :param parent_path: When recursing: the qualified path of `parent_relation` in the document
        :rtype: mongopipe.pipeline.Pipeline
        """
        bags = parent_relation.bags_to if parent_relation is not None else self.bags

        # Group the keys by relation: {relation: {rest of the key: value}}
        nested = {}
        for key, value in where.items():
            head, _, rest = key.partition('.')
            relation = bags.relations.get(head)

            # Not a relation: a field of the current model, which is fine.
            # A dotted path that doesn't resolve is ignored.
            if relation is None:
                if rest:
                    logger.debug('Skipped %r: %s has no relation %r', key, bags.model_name, head)
                continue

            nested_where = nested.setdefault(relation, {})
            if rest:
                nested_where[rest] = value

        for relation, nested_where in nested.items():
            path = _qualify(parent_path, relation.name)
            pipeline.lookup(self.lookup_stage(relation, parent_path))
            if relation.is_single:
                pipeline.unwind({
                    'path': '$' + path,
                    'preserveNullAndEmptyArrays': True,
                })

            # Go deeper
            if nested_where:
                self.expand(pipeline, nested_where, relation, path)
        return pipeline

    @staticmethod
    def lookup_stage(relation: Relation, parent_path: str = '') -> dict:
        """ Make the $lookup options for a relation

        :param relation: The relation to join
        :param parent_path: The qualified path of the parent relation, if any
        """
        target_bags = relation.bags_to

        # Relations through an intermediate collection: join the intermediate documents,
        # and replace every one of them with the target document it points to
        if relation.is_through:
            return {
                'from': relation.through,
                'localField': _qualify(parent_path, relation.native_key_from),
                'foreignField': relation.native_key_to,
                'as': _qualify(parent_path, relation.name),
                'pipeline': [
                    {'$lookup': {
                        'from': target_bags.collection_name,
                        'localField': relation.key_through,
                        'foreignField': target_bags.native_field(relation.key_target),
                        'as': relation.name,
                    }},
                    {'$unwind': '$' + relation.name},
                    {'$replaceRoot': {'newRoot': '$' + relation.name}},
                ],
            }

        return {
            'from': target_bags.collection_name,
            'localField': _qualify(parent_path, relation.native_key_from),
            'foreignField': relation.native_key_to,
            'as': _qualify(parent_path, relation.name),
        }
