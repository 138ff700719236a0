"""Unit tests for worker configuration."""

import os
import tempfile
import unittest
from pathlib import Path

from py2scifio.core.config import BridgeConfig, load_config
from py2scifio.core.errors import ConfigurationError, ErrorCodes


class TestFromEnvironment(unittest.TestCase):
    """Test resolving the worker command from environment variables."""

    def test_missing_scifio_path(self):
        with self.assertRaises(ConfigurationError) as ctx:
            BridgeConfig.from_environment({})
        self.assertIn("SCIFIO_PATH", str(ctx.exception))
        self.assertEqual(ctx.exception.context['setting'], 'SCIFIO_PATH')

    def test_empty_scifio_path(self):
        with self.assertRaises(ConfigurationError):
            BridgeConfig.from_environment({"SCIFIO_PATH": ""})

    def test_default_command(self):
        config = BridgeConfig.from_environment({"SCIFIO_PATH": "/opt/scifio"})
        self.assertEqual(config.command(), [
            "java",
            "-Xmx256m",
            "-Djava.awt.headless=true",
            "-cp",
            os.path.join("/opt/scifio", "*"),
            "loci.formats.itk.ITKBridgePipes",
            "waitForInput",
        ])

    def test_java_home(self):
        config = BridgeConfig.from_environment({"SCIFIO_PATH": "/opt/scifio", "JAVA_HOME": "/opt/jdk"})
        self.assertEqual(config.command()[0], os.path.join("/opt/jdk", "bin", "java"))

    def test_missing_java_home_warns(self):
        with self.assertLogs('py2scifio.core.config', level='WARNING') as logs:
            BridgeConfig.from_environment({"SCIFIO_PATH": "/opt/scifio"})
        self.assertTrue(any("JAVA_HOME" in line for line in logs.output))

    def test_heap_and_jvm_flags(self):
        config = BridgeConfig.from_environment({
            "SCIFIO_PATH": "/opt/scifio",
            "SCIFIO_MAX_HEAP": "1g",
            "SCIFIO_JVM_FLAGS": "-Dfoo=bar -XX:+UseSerialGC",
        })
        command = config.command()
        self.assertEqual(command[1], "-Xmx1g")
        self.assertEqual(command[3:5], ["-Dfoo=bar", "-XX:+UseSerialGC"])
        self.assertEqual(command[5], "-cp")

    def test_overrides_take_precedence(self):
        config = BridgeConfig.from_environment({"SCIFIO_PATH": "/opt/scifio"}, max_heap="2g",
                                               write_chunk_size=500)
        self.assertEqual(config.max_heap, "2g")
        self.assertEqual(config.write_chunk_size, 500)

    def test_unknown_override(self):
        with self.assertRaises(ConfigurationError) as ctx:
            BridgeConfig.from_environment({"SCIFIO_PATH": "/opt/scifio"}, heap="2g")
        self.assertEqual(ctx.exception.error_code, ErrorCodes.CONFIG_INVALID)

    def test_invalid_value(self):
        with self.assertRaises(ConfigurationError):
            BridgeConfig.from_environment({"SCIFIO_PATH": "/opt/scifio"}, write_chunk_size=0)


class TestBridgeConfig(unittest.TestCase):

    def test_frame_sentinel(self):
        self.assertEqual(BridgeConfig("/x", line_terminator="\n").frame_sentinel, b"\n\n")
        self.assertEqual(BridgeConfig("/x", line_terminator="\r\n").frame_sentinel, b"\r\n\r\n")

    def test_default_sentinel_follows_platform(self):
        self.assertEqual(BridgeConfig("/x").frame_sentinel, (os.linesep * 2).encode())

    def test_validate(self):
        valid, errors = BridgeConfig("/x").validate()
        self.assertTrue(valid)
        self.assertEqual(errors, [])

        valid, errors = BridgeConfig("", line_terminator="\r", read_chunk_size=-1).validate()
        self.assertFalse(valid)
        self.assertEqual(len(errors), 3)

    def test_list_flags_become_tuple(self):
        config = BridgeConfig("/x", extra_jvm_flags=["-Da=1"])
        self.assertEqual(config.extra_jvm_flags, ("-Da=1",))


class TestLoadConfig(unittest.TestCase):
    """Test YAML configuration files."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "scifio.yaml"

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_file_values_override_environment(self):
        self.path.write_text(
            "scifio_path: /srv/jars\n"
            "max_heap: 512m\n"
            "extra_jvm_flags:\n"
            "  - -Dloci.debug=true\n",
            encoding='utf-8'
        )
        config = load_config(self.path, environ={"SCIFIO_PATH": "/opt/scifio"})
        self.assertEqual(config.scifio_path, "/srv/jars")
        self.assertEqual(config.max_heap, "512m")
        self.assertEqual(config.extra_jvm_flags, ("-Dloci.debug=true",))

    def test_empty_file_uses_environment(self):
        self.path.write_text("", encoding='utf-8')
        config = load_config(self.path, environ={"SCIFIO_PATH": "/opt/scifio"})
        self.assertEqual(config.scifio_path, "/opt/scifio")

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.path, environ={"SCIFIO_PATH": "/opt/scifio"})
        self.assertEqual(ctx.exception.error_code, ErrorCodes.CONFIG_NOT_FOUND)

    def test_invalid_yaml(self):
        self.path.write_text("scifio_path: [unclosed\n", encoding='utf-8')
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.path, environ={})
        self.assertEqual(ctx.exception.error_code, ErrorCodes.CONFIG_INVALID)

    def test_not_a_mapping(self):
        self.path.write_text("- a\n- b\n", encoding='utf-8')
        with self.assertRaises(ConfigurationError):
            load_config(self.path, environ={"SCIFIO_PATH": "/opt/scifio"})


if __name__ == '__main__':
    unittest.main()
