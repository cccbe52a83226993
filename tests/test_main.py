import io
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import config
import main

UNIT = """
from modloader import Module

def start():
    return "started"

MODULE = Module("{name}", start)
"""


class TestMain(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory(prefix="modloader-main-")
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        self.mod_dir = self.root / "modules"
        self.mod_dir.mkdir()

        for name, value in (
            ("LOG_DIR", self.root / "logs"),
            ("MODULE_CONFIG_DIR", self.root / "moduleconfigs"),
        ):
            patcher = patch.object(config, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)

        # basicConfig is a no-op once root has handlers; keep runs isolated
        setup_patcher = patch.object(main, "setup_logging")
        self.mock_setup = setup_patcher.start()
        self.addCleanup(setup_patcher.stop)
        self.addCleanup(self._purge_sys_modules)

    def _purge_sys_modules(self):
        for key in [k for k in sys.modules if k.startswith("modloader_unit_")]:
            sys.modules.pop(key, None)

    def _run(self, *argv: str) -> tuple[int, str]:
        out = io.StringIO()
        with redirect_stdout(out):
            code = main.main(list(argv))
        return code, out.getvalue()

    def test_loads_directory(self):
        (self.mod_dir / "alpha.py").write_text(UNIT.format(name="alpha"))
        (self.mod_dir / "beta.py").write_text(UNIT.format(name="beta"))
        code, output = self._run(str(self.mod_dir))
        self.assertEqual(code, 0)
        self.assertIn("alpha:", output)
        self.assertIn("beta:", output)
        self.assertIn("loaded=2 crashed=0", output)
        self.mock_setup.assert_called_once_with(config.LOG_LEVEL)

    def test_list_only(self):
        (self.mod_dir / "alpha.py").write_text(UNIT.format(name="alpha"))
        code, output = self._run(str(self.mod_dir), "--list")
        self.assertEqual(code, 0)
        self.assertIn("alpha", output)
        self.assertFalse([k for k in sys.modules if k.endswith("_alpha") and k.startswith("modloader_unit_")])

    def test_missing_directory_exit_code(self):
        with self.assertLogs("modloader", level="ERROR"):
            code, _ = self._run(str(self.root / "missing"))
        self.assertEqual(code, 1)

    def test_list_missing_directory_exit_code(self):
        with self.assertLogs("modloader", level="ERROR") as cm:
            code, output = self._run(str(self.root / "missing"), "--list")
        self.assertEqual(code, 1)
        self.assertEqual(output, "")
        self.assertIn("Could not list files", cm.output[0])

    def test_log_level_option(self):
        self._run(str(self.mod_dir), "--log-level", "debug")
        self.mock_setup.assert_called_once_with("DEBUG")


class TestSetupLogging(unittest.TestCase):
    def test_file_handler_in_log_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_dir = Path(tmpdir) / "logs"
            with patch.object(config, "LOG_DIR", log_dir), patch(
                "main.logging.basicConfig"
            ) as mock_basic:
                main.setup_logging("INFO")
            self.assertTrue(log_dir.is_dir())
            handlers = mock_basic.call_args.kwargs["handlers"]
            self.assertEqual(len(handlers), 2)
            for handler in handlers:
                handler.close()


if __name__ == "__main__":
    unittest.main()
