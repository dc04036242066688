"""Tests for Model: field pipeline, lifecycle and serialization."""
import pytest

from livemodel import ErrorKind, FieldError, Meta, Model, Validator


def kinds(model):
    return [error.kind for error in model.reported]


class TestEndToEnd:
    """The name/age example."""

    def test_fresh_instance(self, person):
        assert person.name == ''
        assert person.age == 0
        assert person.views.name.required is False

    def test_required_follows_age(self, person):
        person.set('age', 5)
        assert person.views.name.required is True
        assert [e.kind for e in person.validate()] == [ErrorKind.REQUIRED_MISSING]

    def test_attribute_access_routes_through_set(self, person):
        person.age = 7
        assert person.get('age') == 7
        assert person.store.get('age') == 7


class TestMutationGates:

    def test_disabled_and_readonly_writes_are_rejected(self, recording_model):
        class Account(recording_model):
            code = Meta(default='A', disabled=True)
            serial = Meta(default=1, readonly=lambda m: True)

        account = Account()

        assert account.set('code', 'B') == 'A'
        assert account.code == 'A'
        assert kinds(account) == [ErrorKind.MUTATION_REJECTED]
        assert account.reported[0].disabled is True

        assert account.set('serial', 2) == 1
        assert account.serial == 1
        assert kinds(account) == [ErrorKind.MUTATION_REJECTED] * 2
        assert account.reported[1].readonly is True
        assert account.views.code.changed is False

    def test_rejected_write_of_current_value_is_not_a_change(self, recording_model):
        class Account(recording_model):
            serial = Meta(default=1, disabled=True)

        account = Account()
        assert account.set('serial', 1) == 1
        assert account.views.serial.changed is False
        assert kinds(account) == [ErrorKind.MUTATION_REJECTED]

    def test_failing_setter_is_not_committed(self, recording_model):
        class Account(recording_model):
            code = Meta(default='A', setter=lambda m, v: v.upper())

        account = Account()
        assert account.set('code', 7) == 'A'
        assert account.views.code.changed is False
        assert kinds(account) == [ErrorKind.HOOK_FAILED]

    def test_force_set_bypasses_readonly(self, recording_model):
        class Account(recording_model):
            serial = Meta(default=1, readonly=True)

        account = Account()
        assert account.set('serial', 2, force=True) == 2
        assert account.serial == 2

    def test_computed_fields_are_immune_to_set(self, recording_model):
        class Cart(recording_model):
            a = Meta(default=1)
            b = Meta(default=2)
            total = Meta(compute=lambda m: m.a + m.b)

        cart = Cart()
        assert cart.set('total', 99) == 3
        assert cart.reported[0].kind is ErrorKind.MUTATION_REJECTED
        assert cart.reported[0].compute is True

        cart.a = 10
        assert cart.total == 12

    def test_setter_and_getter(self, recording_model):
        class Tagged(recording_model):
            tags = Meta(default=list, setter=lambda m, v: sorted(set(v)), getter=lambda m, v: tuple(v))

        tagged = Tagged()
        tagged.tags = ['b', 'a', 'b']
        assert tagged.store.get('tags') == ['a', 'b']
        assert tagged.tags == ('a', 'b')

    def test_nested_set_copies_on_write(self, recording_model):
        class Profile(recording_model):
            data = Meta(default=lambda: {'tags': ['x']})

        profile = Profile()
        before = profile.data
        assert profile.set('data.tags[0]', 'y') == 'y'
        assert before == {'tags': ['x']}
        assert profile.get('data.tags[0]') == 'y'

    def test_undeclared_key_becomes_define(self, person):
        person.set('nickname', 'Ad')
        assert person.nickname == 'Ad'
        person.define('label', lambda m: f'{m.name}:{m.age}')
        person.age = 2
        assert person.label == ':2'

    def test_update_sets_each_key(self, person):
        person.update({'name': 'Ada', 'age': 36})
        assert (person.name, person.age) == ('Ada', 36)

    def test_delete_ad_hoc_key(self, person):
        person.define('tmp', 1)
        person.delete('tmp')
        assert not person.store.has('tmp')


class TestLock:

    def test_lock_freezes_every_mutation(self, person):
        person.age = 3
        person.lock()

        assert person.set('age', 9) == 3
        person.update({'age': 10})
        assert person.define('extra', 1) is None
        assert person.age == 3
        assert person.editable is False

        person.unlock()
        assert person.set('age', 9) == 9


class TestValidate:

    def test_no_validators_no_errors(self, person):
        assert person.validate() == []

    def test_failing_validator_string_message(self, recording_model):
        class Item(recording_model):
            qty = Meta(default=0, type=int, validators=[Validator(lambda m, v, k: v > 0, message='qty must be positive')])

        errors = Item().validate()
        assert len(errors) == 1
        assert errors[0].message == 'qty must be positive'

    def test_validate_key_forms(self, person):
        person.age = 'old'
        person.name = 5
        assert [e.key for e in person.validate('age')] == ['age']
        assert [e.key for e in person.validate(['name', 'age'])] == ['name', 'age']

    def test_on_check_runs_first(self, recording_model):
        class Range(recording_model):
            low = Meta(default=5)
            high = Meta(default=1)

            def on_check(self):
                if self.low > self.high:
                    return [FieldError(ErrorKind.VALIDATOR_FAILED, None, 'low must not exceed high')]
                return []

        assert [e.message for e in Range().validate()] == ['low must not exceed high']


class TestRestore:

    def test_from_json_to_data_round_trip(self, person_cls):
        data = {'name': 'Ada', 'age': 36}
        assert person_cls(data).to_data() == data

    def test_missing_keys_use_defaults(self, person_cls):
        assert person_cls({'name': 'Ada'}).to_data() == {'name': 'Ada', 'age': 0}

    def test_create_wins_over_raw_input(self, recording_model):
        class Named(recording_model):
            full = Meta(default='', create=lambda m, data: f"{data['first']} {data['last']}")

        assert Named({'first': 'Ada', 'last': 'L', 'full': 'x'}).full == 'Ada L'

    def test_restore_drops_ad_hoc_keys_but_keeps_reserved(self, person):
        person.define('tmp', 1)
        person.define('$token', 'abc')
        person.define('_cache', 2)

        person.restore({'name': 'Bo'})

        assert not person.store.has('tmp')
        assert person.store.get('$token') == 'abc'
        assert person.store.get('_cache') == 2
        assert person.name == 'Bo'
        assert person.age == 0

    def test_restore_resets_changed(self, person):
        person.name = 'Ada'
        assert person.views.changed is True
        person.restore({})
        assert person.views.changed is False

    def test_hooks_shape_input_and_output(self, recording_model):
        class Hooked(recording_model):
            name = Meta(default='')

            def on_parse(self, json):
                return {'name': json.get('title', '')}

            def on_switch(self, params):
                return {**params, 'name': params['name'].strip()}

            def on_record(self, data):
                return {'title': data['name']}

            def on_export(self, data):
                return {**data, 'kind': 'hooked'}

        hooked = Hooked({'title': ' Ada '})
        assert hooked.name == 'Ada'
        assert hooked.to_json() == {'title': 'Ada'}
        assert hooked.to_data() == {'name': 'Ada', 'kind': 'hooked'}

    def test_to_json_feeds_from_json(self, recording_model):
        class Tagged(recording_model):
            tags = Meta(
                default=list,
                record=lambda m, v, k, d: {k: ','.join(v)},
                create=lambda m, data: data['tags'].split(',') if isinstance(data.get('tags'), str) else data.get('tags'),
            )

        tagged = Tagged({'tags': ['a', 'b']})
        assert tagged.to_json() == {'tags': 'a,b'}
        assert Tagged(tagged.to_json()).tags == ['a', 'b']


class TestSerialize:

    def test_to_params_flattens(self, recording_model):
        class Query(recording_model):
            name = Meta(default='Ada')
            active = Meta(default=True)
            tags = Meta(default=lambda: ['a', 'b'])
            note = Meta(default=None)
            range = Meta(default=lambda: {'start': 1})

        query = Query()
        assert query.to_params() == {
            'name': 'Ada', 'active': True, 'tags[0]': 'a', 'tags[1]': 'b', 'note': None, 'range.start': 1,
        }
        assert 'note' not in query.to_params(lambda value, path: value is not None)

        form = query.to_form_data()
        assert form['active'] == 'true'
        assert form['note'] == ''
        assert form['range.start'] == '1'
        assert form['tags[1]'] == 'b'


class TestWatch:

    def test_model_watch_receives_events(self, person):
        events = []
        person.watch('age', events.append)
        person.age = 3
        assert [(e.key_path, e.value, e.prev) for e in events] == [(('age',), 3, 0)]
        person.unwatch('age')
        person.age = 4
        assert len(events) == 1

    def test_field_watch_hook(self, recording_model):
        seen = []

        class Watched(recording_model):
            value = Meta(default=0, watch=lambda m, event: seen.append((m, event.value)))

        watched = Watched()
        seen.clear()
        watched.value = 2
        assert seen == [(watched, 2)]

    def test_failing_watcher_is_reported(self, person):
        def broken(event):
            raise RuntimeError('boom')

        person.watch('age', broken)
        person.age = 1
        assert person.age == 1
        assert person.reported[0].kind is ErrorKind.HOOK_FAILED
        assert person.reported[0].option == 'watch'


class TestDerivedClasses:

    def test_extend_adds_fields_and_methods(self, person_cls):
        Employee = person_cls.extend(
            {'company': Meta(default='ACME'), 'age': {'default': 18}},
            {'describe': lambda self: f'{self.name}@{self.company}'},
        )
        employee = Employee({'name': 'Ada'})
        assert employee.company == 'ACME'
        assert employee.age == 18
        assert employee.describe() == 'Ada@ACME'
        assert isinstance(employee, person_cls)

    def test_extract_keeps_subset(self, person_cls):
        Named = person_cls.extract(['name'], ['on_error'])
        named = Named({'name': 'Ada', 'age': 3})
        assert named.schema.keys() == ['name']
        assert named.to_data() == {'name': 'Ada'}

    def test_field_name_collision_is_rejected(self):
        with pytest.raises(TypeError):
            class Broken(Model):
                validate = Meta(default=1)

    def test_fields_are_inherited(self, person_cls):
        class Adult(person_cls):
            age = Meta(default=18, type=int)
            email = Meta(default='')

        assert Adult.__fields__.keys() == {'name', 'age', 'email'}
        assert Adult().age == 18
