"""
Tests for the interception layer.

Tests cover:
- Identity stability of wrappers (cache hits, repeated reads)
- Canonical path assignment for nested values
- New vs changed vs unchanged write classification
- Delete and access-failure reporting
- Method rebinding, pass-through introspection and copy semantics
"""
import copy

import pytest

from objectwatch import Interceptor, ObserverOptions, is_proxy, path_of, unwrap
from conftest import Position, Recorder, Sprite


def make_interceptor(recorder=None, **options):
    mutations = []
    hooks = recorder.hooks() if recorder is not None else {}
    hooks.update(options)
    interceptor = Interceptor(ObserverOptions(**hooks), on_mutation=lambda: mutations.append(1))
    return interceptor, mutations


class TestWrapIdentity:
    """Test one-proxy-per-identity caching."""

    def test_wrap_is_idempotent(self):
        interceptor, _ = make_interceptor()
        target = {'a': 1}

        assert interceptor.wrap(target) is interceptor.wrap(target)

    def test_wrapping_a_proxy_returns_it(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap(Sprite())

        assert interceptor.wrap(handle) is handle

    def test_equal_contents_are_distinct_identities(self):
        interceptor, _ = make_interceptor()

        assert interceptor.wrap({'a': 1}) is not interceptor.wrap({'a': 1})

    def test_repeated_nested_reads_return_same_proxy(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap({'a': {'b': 1}})

        first = handle['a']
        assert is_proxy(first)
        assert handle['a'] is first

    def test_nested_wrapper_is_stored_back(self):
        interceptor, _ = make_interceptor()
        root = {'a': {'b': 1}}
        handle = interceptor.wrap(root)

        nested = handle['a']
        assert root['a'] is nested

    @pytest.mark.parametrize('value', [None, 5, 'text', 1.5, len])
    def test_atomic_and_callable_values_are_rejected(self, value):
        interceptor, _ = make_interceptor()
        with pytest.raises(TypeError):
            interceptor.wrap(value)

    def test_release_drops_cache_entry(self):
        interceptor, _ = make_interceptor()
        target = {'a': 1}
        handle = interceptor.wrap(target)

        interceptor.release(handle)

        assert not interceptor.is_wrapped(target)
        assert interceptor.wrap(target) is not handle


class TestPaths:
    """Test canonical paths of nested wrappers."""

    def test_nested_attribute_path(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap({'a': {'b': {'c': 1}}})

        assert path_of(handle) == ''
        assert path_of(handle['a']) == 'a'
        assert path_of(handle['a']['b']) == 'a.b'

    def test_sequence_index_path(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap({'items': [{'k': 1}]})

        assert path_of(handle['items'][0]) == 'items[0]'

    def test_path_is_assigned_once(self):
        """A second route to the same object does not rename it."""
        interceptor, _ = make_interceptor()
        shared = {'v': 1}
        handle = interceptor.wrap({'first': shared, 'second': shared})

        assert path_of(handle['first']) == 'first'
        assert handle['second'] is handle['first']
        assert path_of(handle['second']) == 'first'

    def test_written_value_gets_child_path(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap(Sprite())

        handle.position = Position()

        assert is_proxy(unwrap(handle).position)
        assert path_of(handle.position) == 'position'


class TestWriteClassification:
    """Test onNewProperty / onPropertyChange dispatch."""

    def test_placeholder_scenario(self):
        """observe {x: None, y: None}; x = 5; x = 5; del y."""
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap({'x': None, 'y': None})

        handle['x'] = 5
        assert recorder.of('new') == [('x', 5, unwrap(handle), recorder.of('new')[0][3])]
        assert len(mutations) == 1

        handle['x'] = 5
        assert len(recorder.calls) == 1

        del handle['y']
        deletes = recorder.of('delete')
        assert len(deletes) == 1
        prop, old_value, target, event = deletes[0]
        assert (prop, old_value) == ('y', None)
        assert target is unwrap(handle)
        assert event.path == ''
        assert event.full_path == 'y'

    def test_nested_change_scenario(self):
        """observe {a: {b: 1}}; a.b = 2 reports a change with event path "a"."""
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap({'a': {'b': 1}})

        handle['a']['b'] = 2

        changes = recorder.of('change')
        assert len(changes) == 1
        prop, old_value, new_value, _target, event = changes[0]
        assert (prop, old_value, new_value) == ('b', 1, 2)
        assert event.path == 'a'
        assert event.full_path == 'a.b'
        assert recorder.of('new') == []

    def test_absent_property_new_then_changed_then_unchanged(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap(Sprite())

        handle.score = 1
        handle.score = 2
        handle.score = 2

        assert [name for name, _ in recorder.calls] == ['new', 'change']
        assert recorder.of('change')[0][1:3] == (1, 2)

    def test_type_change_counts_as_change(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap({})

        handle['flag'] = 1
        handle['flag'] = True

        assert len(recorder.of('change')) == 1

    def test_reassigning_same_object_is_silent(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap({'a': {'b': 1}})

        handle['a'] = handle['a']

        assert recorder.calls == []
        assert len(mutations) == 1

    def test_self_reference_terminates(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap(Sprite())

        handle.self = handle

        assert handle.self is handle
        assert recorder.of('new')[0][0] == 'self'

    def test_timestamp_is_milliseconds(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap({})

        handle['x'] = 1

        event = recorder.of('new')[0][3]
        assert isinstance(event.timestamp, int)
        assert event.timestamp > 10 ** 12

    def test_callbacks_follow_mutation_order(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap({})

        for key in ('a', 'b', 'c'):
            handle[key] = key

        assert [args[0] for args in recorder.of('new')] == ['a', 'b', 'c']

    def test_failing_callback_does_not_break_write(self):
        def explode(*_args):
            raise RuntimeError("callback failed")

        interceptor, mutations = make_interceptor(on_new_property=explode)
        handle = interceptor.wrap({})

        handle['x'] = 1

        assert unwrap(handle)['x'] == 1
        assert len(mutations) == 1

    def test_observe_nested_disabled(self):
        interceptor, _ = make_interceptor(observe_nested=False)
        handle = interceptor.wrap({'a': {'b': 1}})

        assert not is_proxy(handle['a'])
        handle['c'] = {'d': 2}
        assert not is_proxy(unwrap(handle)['c'])


class TestDeleteAndAccess:
    """Test deletion and access-failure reporting."""

    def test_attribute_delete(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap(Sprite())
        handle.x = 3

        del handle.x

        assert recorder.of('delete')[0][:2] == ('x', 3)
        assert not interceptor.tracker.has_dependency(id(unwrap(handle)), 'x')
        assert len(mutations) == 2

    def test_deleting_missing_key_raises_but_schedules(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap({})

        with pytest.raises(KeyError):
            del handle['missing']

        assert recorder.of('delete') == []
        assert len(mutations) == 1

    def test_missing_key_reports_access_failure(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap({'a': {}})

        with pytest.raises(KeyError):
            handle['a']['missing']

        prop, value, _target, event = recorder.of('access_failure')[0]
        assert (prop, value) == ('missing', None)
        assert event.path == 'a'

    def test_missing_attribute_reports_access_failure(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap(Sprite())

        with pytest.raises(AttributeError):
            handle.position

        assert recorder.of('access_failure')[0][0] == 'position'

    def test_existing_none_is_not_an_access_failure(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap(Sprite())

        assert handle.x is None
        assert recorder.calls == []


class TestTransparency:
    """Test pass-through behaviour of the proxy."""

    def test_isinstance_and_unwrap(self):
        interceptor, _ = make_interceptor()
        sprite = Sprite()
        handle = interceptor.wrap(sprite)

        assert isinstance(handle, Sprite)
        assert unwrap(handle) is sprite
        assert unwrap(sprite) is sprite

    def test_mapping_introspection(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap({'x': 1, 'y': 2})

        assert list(handle) == ['x', 'y']
        assert len(handle) == 2
        assert 'x' in handle
        assert handle == {'x': 1, 'y': 2}
        assert dict(handle.items()) == {'x': 1, 'y': 2}

    def test_sequence_iteration_wraps_items(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap([{'a': 1}, 2])

        items = list(handle)
        assert is_proxy(items[0])
        assert items[1] == 2

    def test_method_writes_are_intercepted(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap(Sprite())
        handle.position = Position()

        handle.position.set(10, 10)

        new_props = [(args[0], args[1], args[3].path) for args in recorder.of('new')]
        assert ('x', 10, 'position') in new_props
        assert ('y', 10, 'position') in new_props
        assert unwrap(handle).position.x == 10

    def test_deepcopy_unwraps(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap({'a': {'b': 1}})
        handle['a']

        clone = copy.deepcopy(handle)

        assert type(clone) is dict
        assert type(clone['a']) is dict
        assert clone == {'a': {'b': 1}}


class TestSliceOperations:
    """Test slice assignment and deletion on observed lists."""

    def test_slice_assignment_reports_each_index(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap({'items': [1, 2, 3]})

        handle['items'][0:2] = [9, 9]

        assert unwrap(handle)['items'] == [9, 9, 3]
        changes = [(args[0], args[1], args[2], args[4].full_path) for args in recorder.of('change')]
        assert changes == [(0, 1, 9, 'items[0]'), (1, 2, 9, 'items[1]')]
        assert len(mutations) == 1

    def test_growing_slice_reports_new_indices(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap([1])

        handle[1:] = [2, 3]

        assert [args[:2] for args in recorder.of('new')] == [(1, 2), (2, 3)]
        assert recorder.of('change') == []

    def test_slice_deletion(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap({'items': [1, 2, 3]})

        del handle['items'][0:2]

        assert unwrap(handle)['items'] == [3]
        assert [args[:3] for args in recorder.of('change')] == [(0, 1, 3)]
        assert [args[:2] for args in recorder.of('delete')] == [(1, 2), (2, 3)]
        assert len(mutations) == 1

    def test_slice_items_are_wrapped(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap({'items': [1]})

        handle['items'][0:1] = [{'k': 1}]

        assert is_proxy(unwrap(handle)['items'][0])
        assert path_of(handle['items'][0]) == 'items[0]'

    def test_slice_read_is_not_cached(self):
        interceptor, _ = make_interceptor()
        handle = interceptor.wrap([[1], [2]])

        chunk = handle[0:2]

        assert type(chunk) is list
        assert len(interceptor) == 1


class TestContainerMethods:
    """Test in-place list and dict methods called through a proxy."""

    def test_list_append_extend_pop(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap({'items': []})
        items = handle['items']

        items.append(1)
        items.extend([2, 3])
        assert items.pop() == 3

        assert [(args[0], args[1], args[3].path) for args in recorder.of('new')] == [
            (0, 1, 'items'), (1, 2, 'items'), (2, 3, 'items'),
        ]
        assert [args[:2] for args in recorder.of('delete')] == [(2, 3)]
        assert len(mutations) == 3

    def test_appended_structure_is_observed(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap([])

        handle.append({'hp': 10})
        handle[0]['hp'] = 5

        assert is_proxy(unwrap(handle)[0])
        change = recorder.of('change')[0]
        assert (change[0], change[1], change[2], change[4].path) == ('hp', 10, 5, '[0]')

    def test_sort_reports_moved_values(self):
        recorder = Recorder()
        interceptor, _ = make_interceptor(recorder)
        handle = interceptor.wrap([3, 1, 2])

        handle.sort()

        assert [args[:3] for args in recorder.of('change')] == [(0, 3, 1), (1, 1, 2), (2, 2, 3)]

    def test_failed_method_still_schedules(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap([1])

        with pytest.raises(ValueError):
            handle.remove(5)

        assert recorder.calls == []
        assert len(mutations) == 1

    def test_dict_update_setdefault_pop_clear(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap({'a': 1})

        handle.update({'a': 2, 'b': 3})
        handle.setdefault('c', 4)
        handle.setdefault('c', 5)
        assert handle.pop('a') == 2
        handle.clear()

        assert [name for name, _ in recorder.calls] == [
            'change', 'new', 'new', 'delete', 'delete', 'delete',
        ]
        assert [args[0] for args in recorder.of('delete')] == ['a', 'b', 'c']
        assert unwrap(handle) == {}
        assert len(mutations) == 5

    def test_non_mutating_methods_are_plain(self):
        interceptor, mutations = make_interceptor()
        handle = interceptor.wrap({'a': 1})

        assert handle.get('a') == 1
        assert list(handle.keys()) == ['a']
        assert mutations == []


class TestCacheGrowth:
    """Test that only wrappers stored in the graph are cached."""

    def test_computed_property_is_not_cached(self):
        class Panel:
            def __init__(self):
                self.title = None

            @property
            def layout(self):
                return {'v': 1}

        interceptor, _ = make_interceptor()
        handle = interceptor.wrap(Panel())

        for _ in range(100):
            assert handle.layout == {'v': 1}

        assert len(interceptor) == 1
        assert not is_proxy(handle.layout)

    def test_property_returning_stored_object_gives_cached_proxy(self):
        class Panel:
            def __init__(self):
                self.data = {'v': 1}

            @property
            def view(self):
                return self.__dict__['data']

        interceptor, _ = make_interceptor()
        handle = interceptor.wrap(Panel())

        stored = handle.data

        assert handle.view is stored
        assert len(interceptor) == 2


class TestClose:
    """Test interceptor teardown."""

    def test_close_restores_raw_values(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        raw = {'a': {'b': 1}, 'items': []}
        handle = interceptor.wrap(raw)
        handle['a']['b'] = 2
        handle['items'].append({'k': 1})
        calls_before = len(recorder.calls)

        interceptor.close()

        assert interceptor.closed
        assert type(raw['a']) is dict
        assert type(raw['items'][0]) is dict
        raw['a']['b'] = 3
        assert recorder.calls[calls_before:] == []
        assert len(interceptor) == 0

    def test_closed_proxy_passes_through(self):
        recorder = Recorder()
        interceptor, mutations = make_interceptor(recorder)
        handle = interceptor.wrap({'a': {'b': 1}})
        nested = handle['a']

        interceptor.close()
        nested['b'] = 2
        handle['c'] = {'d': 1}
        del handle['c']

        with pytest.raises(KeyError):
            handle['missing']

        assert unwrap(handle) == {'a': {'b': 2}}
        assert not is_proxy(handle['a'])
        assert recorder.calls == []
        assert mutations == []
