"""
### Custom Stages

A filter can carry raw MongoDB stages:

* `aggregate`: stages that go after `where`, and before `fields` and `order`
* `postAggregate`: stages that go at the very end, after `limit`

```python
Person.aggregate(db, {
    'where': {'age': {'gte': 18}},
    'aggregate': [
        {'$group': {'_id': '$company_id', 'total': {'$sum': 1}}},
    ],
    'order': 'total DESC',
})
```

A stage may omit the `$`: `{'group': {...}}` works just as well.
"""

from collections.abc import Mapping

from .base import PipelineHandlerBase
from ..exc import InvalidFilterError


class AggregateStages(PipelineHandlerBase):
    """ Aggregate: custom stages, appended verbatim """

    filter_section_name = 'aggregate'

    def input(self, stages):
        super(AggregateStages, self).input(stages)
        if stages is not None and not isinstance(stages, (Mapping, list, tuple)):
            raise InvalidFilterError('`{}` must be a stage, or a list of stages; got {!r}'
                                     .format(self.filter_section_name, stages))
        return self

    def is_input_empty(self):
        return not self.input_value

    def alter_pipeline(self, pipeline):
        if not self.is_input_empty():
            pipeline.append(self.input_value)
        return pipeline


class AggregatePostStages(AggregateStages):
    """ postAggregate: custom stages that go at the very end of the pipeline """

    filter_section_name = 'postAggregate'
