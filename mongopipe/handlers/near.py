"""
### Near Operation

Geospatial search: the `near` object is passed to a `$geoNear` stage as is.

```python
Restaurant.aggregate(db, {
    'near': {
        'near': {'type': 'Point', 'coordinates': [-73.99, 40.73]},
        'distanceField': 'distance',
        'maxDistance': 2000,
    }
})
```

MongoDB only accepts `$geoNear` as the very first stage of a pipeline;
the pipeline makes sure it gets there.
"""

from collections.abc import Mapping

from .base import PipelineHandlerBase
from ..exc import InvalidFilterError


class AggregateNear(PipelineHandlerBase):
    """ Near: a $geoNear stage """

    filter_section_name = 'near'

    def input(self, near):
        super(AggregateNear, self).input(near)
        if near is not None and not isinstance(near, Mapping):
            raise InvalidFilterError('`near` must be an object with $geoNear options; got {!r}'.format(near))
        return self

    def is_input_empty(self):
        return not self.input_value

    def alter_pipeline(self, pipeline):
        if not self.is_input_empty():
            pipeline.near(self.input_value)
        return pipeline
