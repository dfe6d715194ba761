"""
MongoPipe runs LoopBack-style filters on MongoDB as aggregation pipelines,
and gives you [SqlAlchemy](http://www.sqlalchemy.org/) model instances as the result.

Unlike a plain `find()`, a pipeline can filter by the fields of related models,
and run custom stages: grouping, geospatial search, and whatnot.

```python
Person.aggregate(db, {
    'where': {'age': {'gte': 18}, 'company.name': 'Acme'},  # filter by a related field
    'order': 'age DESC',  # sort by `age` DESC
    'include': 'company',  # load related `company`
    'limit': 10,  # limit to 10 documents
})
```

Your models describe the collections: the table name is the name of the collection,
the primary key is stored as `_id`, and relationships tell how to $lookup related documents.
"""

# Exceptions that are used here and there
from .exc import *

# MongoPipe needs a lot of information about the properties of your models.
# All this is handled by the following class:
from .bag import ModelPropertyBags, Relation

# A pipeline of stages
from .pipeline import Pipeline

# The heart of MongoPipe are the handlers:
# that's where your filter objects are converted to actual stages!
from . import handlers

# AggregateQuery is the man that parses your filter, runs it, and builds entities
from .query import AggregateQuery

# Entities from documents, and the hooks involved
from .build import ResultBuilder
from .hooks import ModelObservers, HookContext

# SqlAlchemy declarative base mixin that defines .aggregate() on it
# That's just for your convenience.
from .sa import MongoPipeBase

# Helpers
from .util import rewrite_id
# Settings object for AggregateQuery
from .util import AggregateSettingsDict
