import pytest

from cloudkit.driver import (
    Bucket,
    DriverError,
    ErrorKind,
    ObjectAttrs,
    Reader,
    Writer,
    WriterOptions,
)


def test_driver_error_defaults_to_generic_kind():
    err = DriverError("boom")
    assert err.kind is ErrorKind.GENERIC
    assert str(err) == "boom"


def test_driver_error_keeps_not_found_kind():
    err = DriverError("missing", ErrorKind.NOT_FOUND)
    assert err.kind is ErrorKind.NOT_FOUND
    assert err.message == "missing"


def test_driver_errors_of_different_kinds_differ():
    generic = DriverError("x")
    missing = DriverError("x", ErrorKind.NOT_FOUND)
    assert generic.kind is not missing.kind
    assert missing.kind is ErrorKind.NOT_FOUND
    assert generic.message == missing.message == "x"


def test_object_attrs_holds_values():
    attrs = ObjectAttrs(size=14, content_type="text/plain")
    assert attrs.size == 14
    assert attrs.content_type == "text/plain"
    assert attrs.mod_time is None


def test_object_attrs_is_immutable():
    attrs = ObjectAttrs(size=1, content_type="text/plain")
    with pytest.raises(AttributeError):
        attrs.size = 2
    assert attrs.size == 1


def test_writer_options_default_buffer_size_is_zero():
    assert WriterOptions().buffer_size == 0
    assert WriterOptions(buffer_size=1024).buffer_size == 1024


@pytest.mark.parametrize("cls", [Reader, Writer, Bucket])
def test_interfaces_cannot_be_instantiated(cls):
    with pytest.raises(TypeError):
        cls()