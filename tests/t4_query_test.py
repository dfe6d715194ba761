import unittest
from copy import copy, deepcopy

from pymongo.errors import OperationFailure
from sqlalchemy import inspect

from mongopipe import AggregateQuery, AggregateSettingsDict
from mongopipe.exc import InvalidFilterError, InvalidStageError, DisabledError
from .models import Person, Company, sample_database


class QueryTest(unittest.TestCase):
    """ Test AggregateQuery: filter compilation """

    longMessage = True
    maxDiff = None

    def test_compile_full(self):
        """ Every section, in its place """
        aq = AggregateQuery(Person)
        filter = {
            'postAggregate': {'$count': 'n'},
            'limit': 5,
            'skip': 10,
            'order': 'age DESC',
            'fields': ['id', 'name'],
            'aggregate': [{'$addFields': {'x': 1}}],
            'where': {'age': {'gte': 18}, 'company.name': 'Acme'},
            'near': {'near': [0, 0], 'distanceField': 'd'},
            'include': 'company',
        }

        p = aq.compile(filter)
        self.assertEqual(p.stages, [
            {'$geoNear': {'near': [0, 0], 'distanceField': 'd'}},
            {'$match': {'age': {'$gte': 18}}},
            {'$lookup': {'from': 'companies', 'localField': 'company_id', 'foreignField': '_id', 'as': 'company'}},
            {'$unwind': {'path': '$company', 'preserveNullAndEmptyArrays': True}},
            {'$addFields': {'company.name': {'$ifNull': ['$company.name', None]}}},
            {'$match': {'company.name': 'Acme'}},
            {'$addFields': {'x': 1}},
            {'$project': {'_id': True, 'name': True}},
            {'$sort': {'age': -1}},
            {'$skip': 10},
            {'$limit': 5},
            {'$count': 'n'},
        ])

        # offset: same as skip
        p = aq.compile({'offset': 10})
        self.assertEqual(p.stages, [{'$skip': 10}])

    def test_compile_nested_relations(self):
        p = AggregateQuery(Person).compile({'where': {'company.city.name': 'Paris', 'name': 'Alice'}})
        self.assertEqual(p.stages, [
            {'$match': {'name': 'Alice'}},
            {'$lookup': {'from': 'companies', 'localField': 'company_id', 'foreignField': '_id', 'as': 'company'}},
            {'$unwind': {'path': '$company', 'preserveNullAndEmptyArrays': True}},
            {'$lookup': {'from': 'cities', 'localField': 'company.city_id', 'foreignField': '_id', 'as': 'company.city'}},
            {'$unwind': {'path': '$company.city', 'preserveNullAndEmptyArrays': True}},
            {'$addFields': {'company.city.name': {'$ifNull': ['$company.city.name', None]}}},
            {'$match': {'company.city.name': 'Paris'}},
        ])

        # hasMany: no $unwind; the condition matches any of the related documents
        p = AggregateQuery(Company).compile({'where': {'employees.age': {'lt': 18}}})
        self.assertEqual(p.stages, [
            {'$lookup': {'from': 'people', 'localField': '_id', 'foreignField': 'company_id', 'as': 'employees'}},
            {'$addFields': {'employees.age': {'$ifNull': ['$employees.age', None]}}},
            {'$match': {'employees.age': {'$lt': 18}}},
        ])

    def test_compile_is_repeatable(self):
        aq = AggregateQuery(Person)
        filter = {'where': {'company.id': 'c1'}, 'skip': 1, 'offset': 2, 'limit': 3, 'fields': 'name'}
        original = deepcopy(filter)

        p1 = aq.compile(filter)
        p2 = aq.compile(filter)
        self.assertEqual(p1.stages, p2.stages)
        self.assertIsNot(p1, p2)

        # The filter is not modified
        self.assertEqual(filter, original)

        # Handlers of the query keep no state
        self.assertIsNone(aq.handler_limit.limit)
        self.assertFalse(aq.handler_where.input_received)

    def test_compile_empty(self):
        aq = AggregateQuery(Person)
        self.assertEqual(aq.compile().stages, [])
        self.assertEqual(aq.compile(None).stages, [])
        self.assertEqual(aq.compile({}).stages, [])
        self.assertEqual(aq.compile({'where': None, 'order': None, 'include': None}).stages, [])

    def test_compile_stages(self):
        """ A list of stages is used as is """
        aq = AggregateQuery(Person)
        p = aq.compile([{'match': {'a': 1}}, {'$limit': 1}])
        self.assertEqual(p.stages, [{'$match': {'a': 1}}, {'$limit': 1}])

        with self.assertRaises(InvalidStageError):
            aq.compile([{}])
        with self.assertRaises(InvalidStageError):
            aq.compile([{'$match': {}, '$limit': 1}])

    def test_compile_errors(self):
        aq = AggregateQuery(Person)

        # Not a filter
        for filter in ('where', 1, True):
            with self.assertRaises(InvalidFilterError, msg=repr(filter)):
                aq.compile(filter)

        # Unknown sections
        with self.assertRaises(InvalidFilterError) as e:
            aq.compile({'wher': {}, 'limit': 1})
        self.assertIn('wher', str(e.exception))

        # Invalid sections
        for filter in ({'where': 'age'},
                       {'where': {'age': {'between': 1}}},
                       {'order': 1},
                       {'fields': 1},
                       {'limit': 'a'},
                       {'near': [0, 0]},
                       {'aggregate': 'group'},
                       ):
            with self.assertRaises(InvalidFilterError, msg=repr(filter)):
                aq.compile(filter)

    def test_settings(self):
        # max_items
        aq = AggregateQuery(Person, AggregateSettingsDict(max_items=2))
        self.assertEqual(aq.compile({}).stages, [{'$limit': 2}])
        self.assertEqual(aq.compile({'limit': 10}).stages, [{'$limit': 2}])

        # Disabled handlers
        aq = AggregateQuery(Person, AggregateSettingsDict(aggregate_enabled=False, postAggregate_enabled=False))
        with self.assertRaises(DisabledError):
            aq.compile({'aggregate': [{'$match': {}}]})
        with self.assertRaises(DisabledError):
            aq.compile({'postAggregate': [{'$match': {}}]})
        aq.compile({'aggregate': None, 'where': {'age': 1}})  # no input, no error

        # Custom translate_where()
        aq = AggregateQuery(Person, {'translate_where': lambda bags, where: {'custom': len(where)}})
        self.assertEqual(aq.compile({'where': {'a': 1, 'b': 2}}).stages, [{'$match': {'custom': 2}}])

        # Typos
        with self.assertRaises(KeyError):
            AggregateQuery(Person, {'max_itemz': 1})
        with self.assertRaises(KeyError):
            AggregateQuery(Person, {'wehre_enabled': False})

        # Options are known settings
        AggregateQuery(Person, {'build': False, 'mongodb_args': {'allowDiskUse': True}})

    def test_get_options(self):
        aq = AggregateQuery(Person)
        self.assertEqual(aq.get_options(), {
            'build': True,
            'build_options': {'notify': True, 'fail_fast': True},
            'mongodb_args': {},
        })
        self.assertEqual(aq.get_options(build_options={'notify': False})['build_options'],
                         {'notify': False, 'fail_fast': True})

        # explain: no building
        self.assertFalse(aq.get_options(mongodb_args={'explain': True})['build'])

        # Defaults from the settings
        aq = AggregateQuery(Person, {'build_options': {'fail_fast': False}, 'mongodb_args': {'maxTimeMS': 10}})
        self.assertEqual(aq.get_options(mongodb_args={'allowDiskUse': True}), {
            'build': True,
            'build_options': {'notify': True, 'fail_fast': False},
            'mongodb_args': {'maxTimeMS': 10, 'allowDiskUse': True},
        })

        # Typos
        with self.assertRaises(TypeError):
            aq.get_options(biuld=False)

    def test_copy(self):
        aq = AggregateQuery(Person, {'max_items': 5})
        aq2 = copy(aq)

        self.assertIsNot(aq.handler_where, aq2.handler_where)
        self.assertIsNot(aq.handler_limit, aq2.handler_limit)
        self.assertEqual(aq2.handler_limit.max_items, 5)
        self.assertIs(aq2.model, Person)
        self.assertIs(aq2.bags, aq.bags)

        aq2.with_database(sample_database())
        self.assertIsNone(aq._database)

    def test_which_fields_are_relational(self):
        aq = AggregateQuery(Person)
        self.assertEqual(aq.which_fields_are_relational({'name': 1, 'company.name': 1, 'profile': None}),
                         ['company.name', 'profile'])
        self.assertEqual(Person.which_fields_are_relational({'tags.name': 'vip'}), ['tags.name'])


class AggregateTest(unittest.TestCase):
    """ Test AggregateQuery: running pipelines """

    longMessage = True
    maxDiff = None

    def test_aggregate(self):
        db = sample_database()

        people = Person.aggregate(db, {'where': {'age': {'gte': 18}}, 'order': 'age DESC'})
        self.assertEqual([p.name for p in people], ['Carl', 'Alice'])
        self.assertTrue(all(isinstance(p, Person) for p in people))
        self.assertEqual([p.id for p in people], ['p3', 'p1'])

        # The pipeline went to the model's collection
        (collection_name, pipeline, options), = db.calls
        self.assertEqual(collection_name, 'people')
        self.assertEqual(pipeline, [{'$match': {'age': {'$gte': 18}}}, {'$sort': {'age': -1}}])
        self.assertEqual(options, {})

        # Paging
        people = Person.aggregate(db, {'order': 'name', 'skip': 1, 'limit': 1})
        self.assertEqual([p.name for p in people], ['Bob'])

        # No filter
        self.assertEqual(len(Person.aggregate(db)), 3)

        # Stages
        people = Person.aggregate(db, [{'$match': {'name': 'Bob'}}])
        self.assertEqual([p.name for p in people], ['Bob'])

    def test_relational_where(self):
        db = sample_database()

        # belongsTo, nested. Carl has no company: he's just not matched
        people = Person.aggregate(db, {'where': {'company.city.name': 'Paris'}})
        self.assertEqual([p.name for p in people], ['Alice'])

        (collection_name, pipeline, options), = db.calls
        self.assertEqual(collection_name, 'people')
        self.assertEqual([next(iter(stage)) for stage in pipeline],
                         ['$lookup', '$unwind', '$lookup', '$unwind', '$addFields', '$match'])

        # Related documents are not hydrated into the relation
        self.assertEqual(people[0].id, 'p1')
        self.assertIn('company', inspect(people[0]).unloaded)

        # Mixed with own fields
        people = Person.aggregate(db, {'where': {'age': {'gte': 18}, 'company.name': {'neq': 'Acme'}}})
        self.assertEqual([p.name for p in people], ['Carl'])

        # hasMany: any of the related documents
        companies = Company.aggregate(db, {'where': {'employees.age': {'lt': 18}}})
        self.assertEqual([c.name for c in companies], ['Globex'])

        # Through an intermediate collection
        people = Person.aggregate(db, {'where': {'tags.name': 'new'}})
        self.assertEqual([p.name for p in people], ['Alice'])

    def test_mongodb_args(self):
        db = sample_database()

        Person.aggregate(db, {}, mongodb_args={'allowDiskUse': True, 'maxTimeMS': 100})
        self.assertEqual(db.calls[-1][2], {'allowDiskUse': True, 'maxTimeMS': 100})

        # explain: raw output, and a function to build
        result = Person.aggregate(db, {}, mongodb_args={'explain': True})
        self.assertIsInstance(result, tuple)
        self.assertEqual(db.calls[-1][2], {'explain': True})

    def test_no_build(self):
        db = sample_database()
        filter = {'where': {'name': 'Alice'}}

        documents, build = Person.aggregate(db, filter, build=False)
        self.assertEqual(documents, [{'id': 'p1', 'name': 'Alice', 'age': 30, 'company_id': 'c1'}])

        # Build later: same as building right away
        people = build(documents)
        self.assertEqual([(p.id, p.name) for p in people], [('p1', 'Alice')])
        self.assertEqual([(p.id, p.name) for p in Person.aggregate(db, filter)],
                         [(p.id, p.name) for p in people])

        # Settings: no build by default
        aq = AggregateQuery(Person, {'build': False}).with_database(db)
        documents, build = aq.aggregate({})
        self.assertEqual(len(documents), 3)
        self.assertTrue(all('_id' not in doc for doc in documents))

    def test_errors(self):
        db = sample_database()

        # An invalid stage: nothing is sent to MongoDB
        with self.assertRaises(InvalidStageError):
            Person.aggregate(db, [{}])
        with self.assertRaises(InvalidFilterError):
            Person.aggregate(db, {'where': {'age': {'inq': 1}}})
        self.assertEqual(db.calls, [])

        # MongoDB errors propagate
        db['people'].error = OperationFailure('Unrecognized pipeline stage name')
        with self.assertRaises(OperationFailure):
            Person.aggregate(db, [{'$nope': 1}])

        # No database
        with self.assertRaises(AssertionError):
            AggregateQuery(Person).aggregate({})

        # Unknown options
        with self.assertRaises(TypeError):
            Person.aggregate(db, {}, biuld=False)
