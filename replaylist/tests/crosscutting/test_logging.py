import json
import logging

from replaylist.crosscutting.logging import (
    CorrelationContext,
    SecretMasker,
    StructuredFormatter,
    get_logger,
    log_with_fields,
    playlist_id_var,
    provider_var,
    setup_logging,
    stage_var,
    transfer_id_var,
)


class TestSecretMasker:
    """Tests for secret masking functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.masker = SecretMasker()

    def test_mask_access_token(self):
        text = "access_token=BQD3kq9xYzAbCdEfGhIjKlMnOpQr"
        masked = self.masker.mask_secrets(text)
        assert "BQD3kq9xYzAbCdEfGhIjKlMnOpQr" not in masked
        assert masked.startswith("access_token: BQD3")

    def test_mask_music_user_token(self):
        text = "user_token: AmXy1234567890abcdefGHIJKL+/="
        masked = self.masker.mask_secrets(text)
        assert "AmXy1234567890abcdefGHIJKL" not in masked

    def test_plain_text_is_untouched(self):
        text = "Resolved 10/20 tracks"
        assert self.masker.mask_secrets(text) == text

    def test_mask_dict_recurses(self):
        data = {"outer": {"refresh_token": "refresh_token: AQBxyz1234567890abcdefgh"}, "count": 3}
        masked = self.masker.mask_dict(data)
        assert "AQBxyz1234567890abcdefgh" not in json.dumps(masked)
        assert masked["count"] == 3


class TestStructuredFormatter:
    """Tests for JSON log formatting."""

    def _record(self, message: str, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            name="replaylist.test", level=logging.INFO, pathname=__file__, lineno=10,
            msg=message, args=(), exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_formats_json_with_correlation_fields(self):
        formatter = StructuredFormatter()

        with CorrelationContext(transfer_id="transfer_1", provider="spotify",
                                playlist_id="pl1", stage="resolving"):
            line = formatter.format(self._record("hello", fields={"tracks": 3}))

        entry = json.loads(line)
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "replaylist.test"
        assert entry["transferId"] == "transfer_1"
        assert entry["provider"] == "spotify"
        assert entry["playlistId"] == "pl1"
        assert entry["stage"] == "resolving"
        assert entry["fields"] == {"tracks": 3}
        assert entry["ts"].endswith("Z")

    def test_omits_unset_correlation_fields(self):
        entry = json.loads(StructuredFormatter().format(self._record("hi")))
        assert "transferId" not in entry
        assert "fields" not in entry

    def test_masks_secrets_in_message(self):
        line = StructuredFormatter().format(self._record("client_secret=abcdefghijklmnopqrstuvwxyz"))
        assert "abcdefghijklmnopqrstuvwxyz" not in line


class TestCorrelationContext:
    """Tests for correlation context handling."""

    def test_values_are_restored_on_exit(self):
        with CorrelationContext(transfer_id="outer", provider="apple"):
            with CorrelationContext(playlist_id="p1", stage="fetching"):
                assert transfer_id_var.get() == "outer"
                assert playlist_id_var.get() == "p1"
            assert playlist_id_var.get() is None
            assert provider_var.get() == "apple"
        assert transfer_id_var.get() is None
        assert stage_var.get() is None


class TestSetupLogging:
    """Tests for logger configuration."""

    def test_setup_logging_configures_replaylist_logger(self, tmp_path):
        log_file = tmp_path / "replaylist.log"
        logger = setup_logging("DEBUG", log_file=str(log_file))
        try:
            assert logger.name == "replaylist"
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 2
            assert all(isinstance(h.formatter, StructuredFormatter) for h in logger.handlers)

            log_with_fields(get_logger("replaylist.test"), "info", "written", fields={"a": 1}, b=2)
            for handler in logger.handlers:
                handler.flush()

            entry = json.loads(log_file.read_text().strip().splitlines()[-1])
            assert entry["message"] == "written"
            assert entry["fields"] == {"a": 1, "b": 2}
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)

    def test_plain_format(self):
        logger = setup_logging("INFO", structured=False)
        try:
            assert not isinstance(logger.handlers[0].formatter, StructuredFormatter)
        finally:
            logger.handlers.clear()
            logger.setLevel(logging.NOTSET)
