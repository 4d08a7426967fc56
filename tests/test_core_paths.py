import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from sqlcore import paths as core_paths


class CorePathsTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_explicit_directory_wins(self) -> None:
        explicit = self.root / "explicit"
        with mock.patch.dict(os.environ, {core_paths.ENV_HOME: str(self.root / "env")}):
            resolved = core_paths.resolve_working_dir(explicit)
        self.assertEqual(resolved, explicit)
        self.assertTrue(explicit.is_dir())

    def test_environment_overrides_home(self) -> None:
        env_home = self.root / "env"
        with mock.patch.dict(os.environ, {core_paths.ENV_HOME: str(env_home)}):
            resolved = core_paths.resolve_working_dir()
        self.assertEqual(resolved, env_home.resolve())

    def test_structure_layout(self) -> None:
        working_dir = self.root / "work"
        core_paths.ensure_working_dir_structure(working_dir)
        self.assertTrue(core_paths.get_logs_dir(working_dir).is_dir())
        self.assertTrue(core_paths.get_backups_dir(working_dir).is_dir())
        self.assertEqual(core_paths.get_settings_path(working_dir), working_dir / "settings.json")


if __name__ == "__main__":
    unittest.main()
