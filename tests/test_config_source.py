from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from prometheus_client import REGISTRY

from rpcobs.config import EventType, SamplingKind
from rpcobs.errors import ConfigIOError, MalformedConfigError, SourceUnavailableError, UnknownEventTypeError
from rpcobs.runtime import source
from rpcobs.runtime.source import (
    CONFIG_ENV_VAR_NAME,
    CONFIG_FILE_ENV_VAR_NAME,
    get_config,
    load_config_from_environment,
    load_config_from_file,
    resolve_config_text,
)


def _loads(origin: str, status: str) -> float:
    value = REGISTRY.get_sample_value("rpcobs_config_loads_total", {"origin": origin, "status": status})
    return value or 0.0


class TestResolveConfigText(unittest.TestCase):
    def test_inline_json_is_used_when_no_file_var(self) -> None:
        src = resolve_config_text({CONFIG_ENV_VAR_NAME: '{"enable_cloud_trace": true}'})
        self.assertEqual(src.origin, "env")
        self.assertEqual(src.text, '{"enable_cloud_trace": true}')

    def test_nothing_set_resolves_to_none(self) -> None:
        src = resolve_config_text({})
        self.assertEqual(src.origin, "unset")
        self.assertIsNone(src.text)

    def test_empty_file_var_falls_back_to_inline(self) -> None:
        src = resolve_config_text({CONFIG_FILE_ENV_VAR_NAME: "", CONFIG_ENV_VAR_NAME: "{}"})
        self.assertEqual(src.origin, "env")

    def test_file_var_takes_precedence_over_inline(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "observability.json"
            path.write_text('{"event_types": ["GRPC_CALL_CANCEL"]}', encoding="utf-8")
            environ = {
                CONFIG_FILE_ENV_VAR_NAME: str(path),
                CONFIG_ENV_VAR_NAME: '{"event_types": ["GRPC_CALL_TRAILER"]}',
            }
            src = resolve_config_text(environ)
            cfg = load_config_from_environment(environ)

        self.assertEqual(src.origin, "file")
        self.assertEqual(src.location, str(path))
        self.assertEqual(cfg.event_types, (EventType.GRPC_CALL_CANCEL,))

    def test_reads_process_environment_by_default(self) -> None:
        with mock.patch.dict(os.environ, {CONFIG_ENV_VAR_NAME: '{"enable_cloud_monitoring": true}'}):
            os.environ.pop(CONFIG_FILE_ENV_VAR_NAME, None)
            cfg = load_config_from_environment()
        self.assertTrue(cfg.enable_cloud_monitoring)


class TestLoadConfig(unittest.TestCase):
    def test_no_source_fails_fast(self) -> None:
        before = _loads("unset", "SourceUnavailableError")
        with self.assertRaises(SourceUnavailableError):
            load_config_from_environment({})
        self.assertEqual(_loads("unset", "SourceUnavailableError"), before + 1)

    def test_missing_file_is_io_failure(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            missing = Path(td) / "nope.json"
            with self.assertRaises(ConfigIOError) as ei:
                load_config_from_environment({CONFIG_FILE_ENV_VAR_NAME: str(missing), CONFIG_ENV_VAR_NAME: "{}"})
        self.assertEqual(ei.exception.path, str(missing))
        self.assertIsInstance(ei.exception, OSError)

    def test_non_utf8_file_is_io_failure(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "latin1.json"
            path.write_bytes(b'{"destination_project_id": "\xe9t\xe9"}')
            with self.assertRaises(ConfigIOError):
                load_config_from_file(path)

    def test_directory_path_is_io_failure(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ConfigIOError):
                load_config_from_file(Path(td))

    def test_file_with_invalid_json(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "bad.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(MalformedConfigError):
                load_config_from_file(path)

    def test_file_load_success_is_counted(self) -> None:
        before = _loads("file", "ok")
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "ok.json"
            path.write_text('{"global_trace_sampling_rate": 0.5}', encoding="utf-8")
            cfg = load_config_from_file(path)
        self.assertEqual(cfg.sampling.kind, SamplingKind.PROBABILISTIC)
        self.assertEqual(_loads("file", "ok"), before + 1)
        self.assertEqual(REGISTRY.get_sample_value("rpcobs_trace_sampling_rate"), 0.5)

    def test_schema_failure_is_counted_by_error_class(self) -> None:
        before = _loads("env", "UnknownEventTypeError")
        with self.assertRaises(UnknownEventTypeError):
            load_config_from_environment({CONFIG_ENV_VAR_NAME: '{"event_types": ["GRPC_CALL_BOGUS"]}'})
        self.assertEqual(_loads("env", "UnknownEventTypeError"), before + 1)


class TestGetConfig(unittest.TestCase):
    def setUp(self) -> None:
        source.reset_config_for_tests()

    def tearDown(self) -> None:
        source.reset_config_for_tests()

    def test_config_is_built_once(self) -> None:
        first = get_config({CONFIG_ENV_VAR_NAME: '{"enable_cloud_logging": true}'})
        second = get_config({CONFIG_ENV_VAR_NAME: '{"enable_cloud_logging": false}'})
        self.assertIs(first, second)
        self.assertTrue(second.enable_cloud_logging)

    def test_failure_is_not_cached(self) -> None:
        with self.assertRaises(SourceUnavailableError):
            get_config({})
        cfg = get_config({CONFIG_ENV_VAR_NAME: "{}"})
        self.assertFalse(cfg.enable_cloud_trace)


if __name__ == "__main__":
    unittest.main()
