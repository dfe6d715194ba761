from copy import deepcopy


def _get(document, path):
    """ Get a value from a document by a dot-notation path """
    value = document
    for key in path.split('.'):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _resolve(value, path):
    """ Evaluate a '$path' expression: paths that go through an array give an array of values """
    for key in path.split('.'):
        if isinstance(value, list):
            value = [_resolve(v, key) for v in value if isinstance(v, dict) and key in v]
        elif isinstance(value, dict):
            value = value.get(key)
        else:
            return None
    return value


def _candidates(document, path):
    """ Values a query condition is tested against: arrays on the way are traversed, arrays at the end match by any element """
    values = [document]
    for key in path.split('.'):
        found = []
        for v in values:
            if isinstance(v, list):
                found.extend(e.get(key) for e in v if isinstance(e, dict))
            elif isinstance(v, dict):
                found.append(v.get(key))
            else:
                found.append(None)
        values = found
    return values + [e for v in values if isinstance(v, list) for e in v]


def _set(document, path, value):
    """ Set a value by a dot-notation path; in every element, when the path goes through an array """
    head, _, rest = path.partition('.')
    if not rest:
        document[head] = value
        return

    child = document.get(head)
    if isinstance(child, list):
        for element in child:
            if isinstance(element, dict):
                _set(element, rest, value)
    else:
        if not isinstance(child, dict):
            child = document[head] = {}
        _set(child, rest, value)


def _unset(document, path):
    head, _, rest = path.partition('.')
    if not rest:
        document.pop(head, None)
    elif isinstance(document.get(head), dict):
        _unset(document[head], rest)


def _sort_key(value):
    # None goes last, and never gets compared
    return (value is None, value if value is not None else 0)


def _comparable(v):
    return v is not None and not isinstance(v, (list, dict))


# Operators understood by FakeCollection: operator => lambda value, argument
_operators = {
    '$eq': lambda v, a: v == a,
    '$ne': lambda v, a: v != a,
    '$gt': lambda v, a: _comparable(v) and v > a,
    '$gte': lambda v, a: _comparable(v) and v >= a,
    '$lt': lambda v, a: _comparable(v) and v < a,
    '$lte': lambda v, a: _comparable(v) and v <= a,
    '$in': lambda v, a: v in a,
    '$nin': lambda v, a: v not in a,
}

# Negative operators hold when they hold for every candidate value
_negations = {'$ne', '$nin'}


def matches(document, query):
    """ Test whether a document matches a (simple) MongoDB query """
    for key, cond in query.items():
        if key == '$and':
            if not all(matches(document, q) for q in cond):
                return False
            continue

        values = _candidates(document, key)
        if isinstance(cond, dict) and cond and all(k.startswith('$') for k in cond):
            for op, arg in cond.items():
                quantifier = all if op in _negations else any
                if not quantifier(_operators[op](v, arg) for v in values):
                    return False
        elif not any(v == cond for v in values):
            return False
    return True


def evaluate(document, expression):
    """ Evaluate an (simple) aggregation expression: '$path', {'$ifNull': [...]}, or a literal """
    if isinstance(expression, str) and expression.startswith('$'):
        return _resolve(document, expression[1:])
    if isinstance(expression, dict) and '$ifNull' in expression:
        value, default = (evaluate(document, e) for e in expression['$ifNull'])
        return default if value is None else value
    return expression


class FakeCollection:
    """ An in-memory collection that records every aggregate() call

        Understands a few stages: $match (simple queries), $project, $sort, $skip, $limit,
        $lookup (with a `pipeline` as well), $unwind, $replaceRoot, $addFields.
        Other stages are ignored.
    """

    def __init__(self, name, documents=(), error=None, log=None, database=None):
        self.name = name
        self.documents = list(documents)
        #: Exception to raise from aggregate()
        self.error = error
        #: Recorded calls: [(pipeline, options)]
        self.calls = []
        #: A list shared with other collections: [(collection name, pipeline, options)]
        self.log = log
        #: The database, for $lookup
        self.database = database

    def aggregate(self, pipeline, **options):
        self.calls.append((pipeline, options))
        if self.log is not None:
            self.log.append((self.name, pipeline, options))
        if self.error is not None:
            raise self.error

        return iter(self._run(deepcopy(self.documents), pipeline))

    def _run(self, documents, pipeline):
        for stage in pipeline:
            (op, value), = stage.items()
            if op == '$match':
                documents = [d for d in documents if matches(d, value)]
            elif op == '$project':
                documents = [self._project(d, value) for d in documents]
            elif op == '$sort':
                for key, direction in reversed(list(value.items())):
                    documents.sort(key=lambda d: _sort_key(_get(d, key)), reverse=direction == -1)
            elif op == '$skip':
                documents = documents[value:]
            elif op == '$limit':
                documents = documents[:value]
            elif op == '$lookup':
                for d in documents:
                    _set(d, value['as'], self._lookup(d, value))
            elif op == '$unwind':
                documents = [u for d in documents for u in self._unwind(d, value)]
            elif op == '$replaceRoot':
                documents = [evaluate(d, value['newRoot']) for d in documents]
            elif op == '$addFields':
                for d in documents:
                    for path, expression in value.items():
                        _set(d, path, evaluate(d, expression))
        return documents

    def _lookup(self, document, lookup):
        local = _get(document, lookup['localField'])
        foreign = self.database[lookup['from']]
        joined = [deepcopy(f) for f in foreign.documents
                  if _get(f, lookup['foreignField']) == local]
        if 'pipeline' in lookup:
            joined = foreign._run(joined, lookup['pipeline'])
        return joined

    @staticmethod
    def _unwind(document, unwind):
        if isinstance(unwind, str):
            unwind = {'path': unwind}
        path = unwind['path'][1:]
        values = _get(document, path)

        if isinstance(values, list) and values:
            for v in values:
                d = deepcopy(document)
                _set(d, path, v)
                yield d
        elif unwind.get('preserveNullAndEmptyArrays'):
            if isinstance(values, list):
                _unset(document, path)
            yield document

    @staticmethod
    def _project(document, projection):
        if any(v for k, v in projection.items() if k != '_id'):
            keep = {k for k, v in projection.items() if v}
            if projection.get('_id', True):
                keep.add('_id')
            return {k: v for k, v in document.items() if k in keep}
        else:
            return {k: v for k, v in document.items() if k not in projection}


class FakeDatabase:
    """ An in-memory database: db[collection_name] """

    def __init__(self, **collections):
        self._log = []
        self.collections = {name: FakeCollection(name, documents, log=self._log, database=self)
                            for name, documents in collections.items()}

    def __getitem__(self, name) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name, log=self._log, database=self)
        return self.collections[name]

    @property
    def calls(self):
        """ All aggregate() calls, in the order they were made: [(collection name, pipeline, options)] """
        return list(self._log)
