"""Pytest configuration and shared fixtures."""
import pytest

from livemodel import Meta, Model, reset_model_config


class RecordingModel(Model):
    """Model that keeps every reported error instead of logging it."""

    def on_error(self, error):
        self.__dict__.setdefault('_reported', []).append(error)
        return None

    @property
    def reported(self):
        return self.__dict__.setdefault('_reported', [])


class Person(RecordingModel):
    """Name/age model used across the model and view tests."""
    name = Meta(default='', type=str, required=lambda m: m.age > 0)
    age = Meta(default=0, type=int)


class Address(RecordingModel):
    city = Meta(default='', type=str, required=True)
    zip = Meta(default='', type=str)


class Customer(RecordingModel):
    name = Meta(default='', type=str)
    address = Address
    previous = [Address]


@pytest.fixture(autouse=True)
def reset_config():
    """Reset the framework configuration around each test."""
    reset_model_config()
    yield
    reset_model_config()


@pytest.fixture
def recording_model():
    """Base class whose instances record reported errors in `.reported`."""
    return RecordingModel


@pytest.fixture
def person_cls():
    return Person


@pytest.fixture
def person():
    """Fresh Person with default values."""
    return Person()


@pytest.fixture
def customer():
    """Customer with one address and two previous addresses."""
    return Customer({
        'name': 'Ada',
        'address': {'city': 'London', 'zip': 'N1'},
        'previous': [{'city': 'Paris'}, {'city': 'Rome', 'zip': '00100'}],
    })
