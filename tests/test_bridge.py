"""
End-to-end tests for ScifioBridge.

Runs the bridge against the Python mock worker over real pipes, so the
whole stack (configuration, process supervision, framing, metadata and
bulk transfer) is exercised without Java.
"""

import os
import sys
import tempfile
import threading
import time
import unittest
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import numpy as np

from py2scifio import BridgeConfig, ScifioBridge
from py2scifio.core.errors import ConfigurationError, DataError, ProtocolError
from py2scifio.models.image import ByteOrder, PixelKind, PixelType, Region

MOCK_WORKER = Path(__file__).resolve().parent / "mock_scifio_worker.py"
CHUNK = 10
EXPECTED = np.arange(24, dtype="<u2").reshape(1, 1, 2, 3, 4)


def make_bridge():
    config = BridgeConfig(scifio_path="unused", line_terminator="\n", write_chunk_size=CHUNK)
    argv = [sys.executable, str(MOCK_WORKER), "waitForInput", "--chunk", str(CHUNK)]
    return ScifioBridge(config, argv=argv)


class TestBridgeQueries(unittest.TestCase):
    """Test probing and describing files."""

    def setUp(self):
        self.bridge = make_bridge()

    def tearDown(self):
        self.bridge.close()

    def test_probe_readable(self):
        self.assertTrue(self.bridge.probe_readable("/data/cells.tif"))
        self.assertFalse(self.bridge.probe_readable("/data/cells.txt"))

    def test_probe_writable(self):
        self.assertTrue(self.bridge.probe_writable("/data/out.tif"))
        self.assertFalse(self.bridge.probe_writable("/data/out.txt"))

    def test_worker_is_reused_between_calls(self):
        self.bridge.probe_readable("/data/a.tif")
        pid = self.bridge.session.pid
        self.bridge.probe_writable("/data/b.tif")
        self.assertEqual(self.bridge.session.pid, pid)

    def test_describe(self):
        descriptor = self.bridge.describe("/data/cells.tif")
        self.assertEqual(descriptor.size, (4, 3, 2, 1, 1))
        self.assertEqual(descriptor.spacing, (0.5, 0.5, 2.0, 1.0, 1.0))
        self.assertIs(descriptor.pixel_type, PixelType.UINT16)
        self.assertIs(descriptor.byte_order, ByteOrder.LITTLE_ENDIAN)
        self.assertIs(descriptor.pixel_kind, PixelKind.SCALAR)

    def test_describe_keeps_first_duplicate_and_unescapes(self):
        descriptor = self.bridge.describe("/data/cells.tif")
        self.assertEqual(descriptor.metadata["SizeX"], "4")
        self.assertEqual(descriptor.metadata["Description"], "first line\nsecond \\ line")

    def test_worker_crash_is_reported_and_recovered(self):
        with self.assertRaises(ProtocolError) as ctx:
            self.bridge.describe("/data/crash.tif")
        self.assertIn("exited abnormally", str(ctx.exception))
        self.assertIsNone(self.bridge.session.pid)

        # next call spawns a fresh worker
        self.assertTrue(self.bridge.probe_readable("/data/cells.tif"))

    def test_concurrent_calls_are_serialized(self):
        results = []

        def check(path):
            results.append((path, self.bridge.probe_readable(path)))

        threads = [threading.Thread(target=check, args=(f"/data/{i}.{ext}",))
                   for i, ext in enumerate(["tif", "png"] * 4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), 8)
        for path, readable in results:
            self.assertEqual(readable, path.endswith(".tif"))


class TestBridgeRead(unittest.TestCase):
    """Test pixel reads."""

    def setUp(self):
        self.bridge = make_bridge()
        self.descriptor = self.bridge.describe("/data/cells.tif")

    def tearDown(self):
        self.bridge.close()

    def test_read_whole_image(self):
        data = self.bridge.read("/data/cells.tif", self.descriptor)
        self.assertEqual(len(data), 48)
        self.assertEqual(bytes(data), EXPECTED.tobytes())

    def test_read_array(self):
        array = self.bridge.read_array("/data/cells.tif", self.descriptor)
        self.assertEqual(array.shape, (1, 1, 2, 3, 4))
        np.testing.assert_array_equal(array, EXPECTED)

    def test_read_region(self):
        region = Region(index=(1, 1, 1), size=(2, 2, 1))
        array = self.bridge.read_array("/data/cells.tif", self.descriptor, region)
        self.assertEqual(array.shape, (1, 2, 2))
        np.testing.assert_array_equal(array, EXPECTED[0, 0, 1:2, 1:3, 1:3])

    def test_read_into_destination(self):
        destination = bytearray(48)
        result = self.bridge.read("/data/cells.tif", self.descriptor, destination=destination)
        self.assertIs(result, destination)
        self.assertEqual(bytes(destination), EXPECTED.tobytes())

    def test_strided_destination_leaves_worker_in_sync(self):
        destination = np.empty((1, 1, 2, 3, 8), dtype="<u2")[..., ::2]
        with self.assertRaises(DataError):
            self.bridge.read("/data/cells.tif", self.descriptor, destination=destination)
        # nothing was requested, so the next reply answers canRead
        self.assertFalse(self.bridge.probe_readable("/data/cells.txt"))
        np.testing.assert_array_equal(
            self.bridge.read_array("/data/cells.tif", self.descriptor), EXPECTED)


class TestBridgeWrite(unittest.TestCase):
    """Test the write handshake against the mock worker."""

    def setUp(self):
        self.bridge = make_bridge()
        self.descriptor = self.bridge.describe("/data/cells.tif")
        self.temp_dir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.bridge.close()
        self.temp_dir.cleanup()

    def _path(self, name):
        return os.path.join(self.temp_dir.name, name)

    def test_write_array(self):
        path = self._path("out.tif")
        pixels = (EXPECTED * 3).astype("<u2")
        self.bridge.write(path, self.descriptor, pixels)
        self.assertEqual(Path(path).read_bytes(), pixels.tobytes())

    def test_write_then_bridge_still_usable(self):
        path = self._path("out.tif")
        self.bridge.write(path, self.descriptor, EXPECTED.tobytes())
        self.assertTrue(self.bridge.probe_readable(path))

    def test_write_region(self):
        path = self._path("plane.tif")
        region = Region.from_size((4, 3))
        plane = EXPECTED[0, 0, 1]
        self.bridge.write(path, self.descriptor, plane, region)
        self.assertEqual(Path(path).read_bytes(), plane.tobytes())

    def test_big_endian_descriptor_swaps_native_array(self):
        path = self._path("big.tif")
        descriptor = replace(self.descriptor, byte_order=ByteOrder.BIG_ENDIAN)
        pixels = np.arange(24, dtype="<u2").reshape(1, 1, 2, 3, 4)
        self.bridge.write(path, descriptor, pixels)
        self.assertEqual(Path(path).read_bytes(), pixels.astype(">u2").tobytes())
        self.assertEqual(Path(path).read_bytes()[:4], b"\x00\x00\x00\x01")

    def test_dtype_mismatch(self):
        with self.assertRaises(DataError):
            self.bridge.write(self._path("out.tif"), self.descriptor, EXPECTED.astype(np.float32))

    def test_buffer_size_mismatch(self):
        with self.assertRaises(DataError):
            self.bridge.write(self._path("out.tif"), self.descriptor, bytes(46))

    def test_worker_exits_mid_plane(self):
        path = self._path("crash_mid_plane.tif")
        with self.assertRaises(ProtocolError):
            self.bridge.write(path, self.descriptor, EXPECTED)
        self.assertFalse(Path(path).exists())
        self.assertIsNone(self.bridge.session.pid)


class TestBridgeClose(unittest.TestCase):
    """close() is the way out of a worker that never answers."""

    def test_close_interrupts_hung_call(self):
        config = BridgeConfig(scifio_path="unused", line_terminator="\n")
        bridge = ScifioBridge(config, argv=[sys.executable, "-c", "import time; time.sleep(30)"])
        errors = []

        def call():
            try:
                bridge.probe_readable("/data/cells.tif")
            except ProtocolError as e:
                errors.append(e)

        thread = threading.Thread(target=call, daemon=True)
        thread.start()
        deadline = time.monotonic() + 10
        while not bridge.session.is_running() and time.monotonic() < deadline:
            time.sleep(0.05)
        time.sleep(0.2)

        started = time.monotonic()
        bridge.close()
        thread.join(timeout=10)

        self.assertFalse(thread.is_alive())
        self.assertLess(time.monotonic() - started, 10)
        self.assertEqual(len(errors), 1)
        self.assertIsNone(bridge.session.pid)


class TestBridgeConfiguration(unittest.TestCase):

    def test_missing_scifio_path(self):
        environ = {k: v for k, v in os.environ.items() if k != "SCIFIO_PATH"}
        with patch.dict(os.environ, environ, clear=True):
            with self.assertRaises(ConfigurationError):
                ScifioBridge()

    def test_command_from_environment(self):
        with patch.dict(os.environ, {"SCIFIO_PATH": "/opt/scifio"}):
            bridge = ScifioBridge()
        self.assertEqual(bridge.session.argv[-2:], ["loci.formats.itk.ITKBridgePipes", "waitForInput"])
        self.assertIsNone(bridge.session.pid)


if __name__ == '__main__':
    unittest.main()
