"""Tests for spooler error classification."""

from printbridge.spooler.errors import (
    IPP_NOT_FOUND,
    SpoolerErrorType,
    SpoolerRequestError,
    SpoolerUnavailable,
    classify_spooler_error,
)


class TestClassifySpoolerError:
    def test_unavailable(self):
        assert classify_spooler_error(SpoolerUnavailable("down")) == SpoolerErrorType.TRANSPORT

    def test_request_error(self):
        assert classify_spooler_error(SpoolerRequestError(0x0400)) == SpoolerErrorType.PROTOCOL

    def test_connection_error(self):
        assert classify_spooler_error(ConnectionRefusedError()) == SpoolerErrorType.TRANSPORT

    def test_message(self):
        assert classify_spooler_error(RuntimeError("No route to host")) == SpoolerErrorType.TRANSPORT

    def test_cause_chain(self):
        try:
            try:
                raise TimeoutError()
            except TimeoutError as e:
                raise RuntimeError("wrapped") from e
        except RuntimeError as wrapped:
            assert classify_spooler_error(wrapped) == SpoolerErrorType.TRANSPORT

    def test_unknown(self):
        assert classify_spooler_error(ValueError("odd")) == SpoolerErrorType.UNKNOWN


class TestSpoolerRequestError:
    def test_not_found(self):
        assert SpoolerRequestError(IPP_NOT_FOUND).not_found
        assert not SpoolerRequestError(0x0400).not_found

    def test_message(self):
        assert str(SpoolerRequestError(0x0400, "bad request")) == "IPP status 0x0400: bad request"
