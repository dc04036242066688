"""Tests for the raw state store."""
import pytest

from livemodel import UNDEFINED, Computed, Store


@pytest.fixture
def store():
    return Store()


def record(events):
    return events.append


class TestReadWrite:
    """get/set/update/delete on plain keys and nested paths."""

    def test_set_then_get(self, store):
        """get() reflects the last committed set() immediately."""
        assert store.set('age', 3) == 3
        assert store.get('age') == 3
        store.set('age', 4)
        assert store.get('age') == 4

    def test_missing_key_returns_default(self, store):
        assert store.get('missing') is None
        assert store.get('missing', 'fallback') == 'fallback'

    def test_update_sets_every_key(self, store):
        store.update({'a': 1, 'b': 2})
        assert store.data == {'a': 1, 'b': 2}
        assert store.has('a')
        assert store.keys() == ['a', 'b']

    def test_nested_set_is_persistent(self, store):
        """A nested set copies the ancestors instead of mutating the old value."""
        store.set('profile', {'name': 'a', 'tags': ['x', 'y']})
        before = store.get('profile')

        store.set('profile.tags[0]', 'z')

        assert before == {'name': 'a', 'tags': ['x', 'y']}
        assert store.get('profile.tags[0]') == 'z'
        assert store.get('profile') is not before
        assert store.get('profile')['tags'] is not before['tags']

    def test_delete_nested_and_top_level(self, store):
        store.set('profile', {'name': 'a', 'age': 3})
        store.delete('profile.age')
        assert store.get('profile') == {'name': 'a'}
        store.delete('profile')
        assert not store.has('profile')


class TestComputed:
    """Computed entries are evaluated on every read."""

    def test_define_computed(self, store):
        store.set('a', 3)
        store.define('double', lambda: store.get('a') * 2)
        assert store.get('double') == 6
        store.set('a', 5)
        assert store.get('double') == 10
        assert store.is_computed('double')

    def test_set_on_computed_is_ignored(self, store):
        store.define('answer', lambda: 42)
        store.set('answer', 1)
        assert store.get('answer') == 42

    def test_entry_returns_computed_object(self, store):
        getter = Computed(lambda: 1)
        store.init({'one': getter, 'two': 2})
        assert store.entry('one') is getter
        assert store.entry('two') == 2
        assert store.entry('three') is UNDEFINED


class TestEditable:
    """editable=False freezes every mutation entry point."""

    def test_locked_store_ignores_mutation(self, store):
        store.set('a', 1)
        store.editable = False

        assert store.set('a', 2) == 1
        store.update({'a': 3})
        store.define('b', lambda: 1)
        store.delete('a')
        store.init({})

        assert store.data == {'a': 1}


class TestWatch:
    """Watcher matching and dispatch."""

    def test_exact_watch_receives_event(self, store):
        events = []
        store.watch('age', record(events))
        store.set('age', 1)

        assert len(events) == 1
        assert events[0].key_path == ('age',)
        assert events[0].key == 'age'
        assert events[0].value == 1
        assert events[0].prev is UNDEFINED

    def test_same_value_is_not_dispatched(self, store):
        events = []
        store.watch('age', record(events))
        store.set('age', 1)
        store.set('age', 1)
        assert len(events) == 1

    def test_force_dispatch_skips_dedupe(self, store):
        events = []
        store.watch('age', record(events))
        assert store.dispatch('age', 1, 1) == 0
        assert store.dispatch('age', 1, 1, force=True) == 1
        assert len(events) == 1

    def test_wildcard_segment(self, store):
        events = []
        store.set('items', [1, 2])
        store.watch(('items', '*'), record(events))

        store.set('items', [3])
        store.set('items[0]', 4)

        assert [e.key_path for e in events] == [('items', 0)]

    def test_deep_watch_sees_nested_changes(self, store):
        events = []
        store.set('profile', {'name': 'a'})
        store.watch('profile', record(events), deep=True)
        store.set('profile.name', 'b')

        assert events[0].key_path == ('profile', 'name')
        assert events[0].value == 'b'
        assert events[0].prev == 'a'

    def test_shallow_watch_ignores_nested_changes(self, store):
        events = []
        store.set('profile', {'name': 'a'})
        store.watch('profile', record(events))
        store.set('profile.name', 'b')
        assert events == []

    def test_unwatch(self, store):
        events = []
        handler = record(events)
        store.watch('age', handler)
        store.unwatch('age', handler)
        store.set('age', 1)
        assert events == []

    def test_delete_dispatches_undefined(self, store):
        events = []
        store.set('age', 1)
        store.watch('age', record(events))
        store.delete('age')
        assert events[0].value is UNDEFINED
        assert events[0].prev == 1

    def test_init_dispatches_changed_keys(self, store):
        events = []
        store.set('old', 1)
        store.set('kept', 2)
        store.watch('*', record(events))

        store.init({'kept': 2, 'new': 3})

        assert not store.has('old')
        assert {e.key for e in events} == {'old', 'new'}


def test_watcher_errors_are_contained():
    """A failing watcher is reported and does not stop the others."""
    failures = []
    events = []
    store = Store(on_error=lambda path, error: failures.append((path, error)))

    def broken(event):
        raise RuntimeError('boom')

    store.watch('age', broken)
    store.watch('age', events.append)

    assert store.set('age', 1) == 1
    assert len(events) == 1
    assert failures[0][0] == ('age',)
    assert isinstance(failures[0][1], RuntimeError)
