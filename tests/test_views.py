"""Tests for field views and view aggregates."""
import pytest

from livemodel import Evaluation, Meta, ViewAttribute, VIEW_ATTRIBUTES, model_config_context


class TestFieldView:

    def test_value_reads_and_writes(self, person):
        view = person.views.age
        view.value = 4
        assert person.age == 4
        assert view.value == 4
        assert view.changed is True
        assert person.views['name'].changed is False

    def test_data_is_raw_and_text_is_formatted(self, recording_model):
        class Price(recording_model):
            amount = Meta(default=2.5, getter=lambda m, v: round(v), formatter=lambda m, v: f'${v}')
            note = Meta(default=None)

        price = Price()
        assert price.views.amount.data == 2.5
        assert price.views.amount.value == 2
        assert price.views.amount.text == '$2.5'
        assert price.views.note.text == ''
        with model_config_context(text_none='-'):
            assert price.views.note.text == '-'

    def test_errors_are_lazy(self, person):
        assert person.views.name.errors == []
        person.age = 1
        assert len(person.views.name.errors) == 1

    def test_capability_flags(self, recording_model):
        class Form(recording_model):
            secret = Meta(default='', hidden=True, readonly=lambda m: m.locked)
            locked = Meta(default=False)

        form = Form()
        assert form.views.secret.hidden is True
        assert form.views.secret.readonly is False
        assert form.views.secret.disabled is False
        form.locked = True
        assert form.views.secret.readonly is True

    def test_extra_attributes(self, recording_model):
        class Labeled(recording_model):
            age = Meta(default=0, extra={'label': 'Age', 'hint': lambda m: f'now {m.age}'})

        labeled = Labeled()
        assert labeled.views.age.label == 'Age'
        assert labeled.views.age.hint == 'now 0'
        with pytest.raises(AttributeError):
            labeled.views.age.placeholder

    def test_custom_capability_table(self, recording_model):
        class Tooltipped(recording_model):
            view_attributes = VIEW_ATTRIBUTES + (ViewAttribute('tooltip', '', Evaluation.VALUE),)
            age = Meta(default=0, extra={'tooltip': 'years'})
            name = Meta(default='')

        tooltipped = Tooltipped()
        assert tooltipped.views.age.tooltip == 'years'
        assert tooltipped.views.name.tooltip == ''

    def test_field_state(self, recording_model):
        class Search(recording_model):
            query = Meta(default='', state=lambda: {'loading': False, 'page': 1})

        search = Search()
        state = search.views.query.state
        assert state.loading is False
        state.loading = True
        assert search.get('loading') is True
        assert state.to_dict() == {'loading': True, 'page': 1}
        with pytest.raises(AttributeError):
            state.unknown


class TestViews:

    def test_iteration_and_lookup(self, person):
        assert [view.key for view in person.views] == ['name', 'age']
        assert 'name' in person.views
        assert person.views['age'] is person.views.age
        with pytest.raises(AttributeError):
            person.views.missing

    def test_all_errors(self, person):
        person.age = 'x'
        person.name = 3
        assert [e.key for e in person.views.all_errors] == ['name', 'age']

    def test_changed_aggregate(self, person):
        assert person.views.changed is False
        person.name = 'Ada'
        assert person.views.changed is True
        person.views.changed = False
        assert person.views.name.changed is False
        person.views.changed = True
        assert person.views.age.changed is True

    def test_model_state(self, recording_model):
        class Paged(recording_model):
            items = Meta(default=list, state=lambda: {'page': 1})
            total = Meta(default=0, state=lambda: {'loading': False})

        paged = Paged({'page': 3})
        assert set(paged.views.state) == {'page', 'loading'}
        assert paged.views.state.page == 3
        paged.views.state.loading = True
        assert paged.loading is True
        paged.restore({})
        assert paged.views.state.loading is False
