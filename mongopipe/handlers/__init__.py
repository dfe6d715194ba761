"""

If you know how to query models in LoopBack, you can run MongoDB aggregations with the same language.
Every section of the filter object is converted into stages of a
[MongoDB aggregation pipeline](https://docs.mongodb.com/manual/core/aggregation-pipeline/).


Filter Object Syntax
--------------------

A filter is an object with the following properties:

* `near`: [Near Operation](#near-operation): geospatial search
* `where`: [Where Operation](#where-operation) filters the results, using your criteria.
    Fields of related models can be used as well.
* `aggregate`: [Custom Stages](#custom-stages) that go right after filtering
* `fields`: [Fields Operation](#fields-operation) selects the fields to be loaded
* `order`: [Order Operation](#order-operation) determines the sorting of the results
* `skip`, `offset`, `limit`: [Limit Operation](#limit-operation): paginates the results
* `postAggregate`: [Custom Stages](#custom-stages) that go at the very end
* `include`: [Include Operation](#include-operation) loads related entities

The stages always go in this order, no matter how the object is written.

An example filter is:

```python
{
    'where': {
        'age': {'gte': 18},  # Age >= 18
        'company.name': 'Acme',  # Works at Acme
    },
    'fields': ['id', 'name'],  # Only fetch these fields
    'order': 'age DESC',  # Sort by age, descending
    'include': 'company',  # Load the 'company' relation
    'limit': 100,  # Display 100 per page
    'skip': 10,  # Skip first 10 documents
}
```

A filter can also be a list of stages: such a pipeline is executed as is.
"""

from .base import PipelineHandlerBase
from .near import AggregateNear
from .where import AggregateWhere, translate_where
from .stages import AggregateStages, AggregatePostStages
from .fields import AggregateFields
from .order import AggregateOrder, translate_sort
from .limit import AggregateLimit
from .lookup import RelationExpander
from .include import IncludeParams, IncludeResolver, normalize_include
