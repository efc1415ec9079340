import pytest

from src.core.exceptions import SessionInitializationError
from src.services.session.backend import create_backend, load_backend_factory
from tests.helpers import FakeBackend


def make_fake() -> FakeBackend:
    return FakeBackend()


def make_something_else() -> object:
    return object()


NOT_CALLABLE = 42


def test_load_factory_by_path() -> None:
    factory = load_backend_factory("tests.services.test_backend_loader:make_fake")
    assert factory is make_fake


def test_create_backend() -> None:
    backend = create_backend("tests.services.test_backend_loader:make_fake")
    assert isinstance(backend, FakeBackend)


@pytest.mark.parametrize(
    "path",
    [
        "",
        "no_colon_here",
        "tests.services.test_backend_loader:",
        "no.such.module:factory",
        "tests.services.test_backend_loader:missing",
        "tests.services.test_backend_loader:NOT_CALLABLE",
    ],
)
def test_load_failures(path: str) -> None:
    with pytest.raises(SessionInitializationError):
        load_backend_factory(path)


def test_factory_must_return_backend() -> None:
    with pytest.raises(SessionInitializationError, match="GenerationBackend"):
        create_backend("tests.services.test_backend_loader:make_something_else")
