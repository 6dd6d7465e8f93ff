import unittest

import toml

import vtcoerce


class TestVersion(unittest.TestCase):
    def test_version(self):
        with open("pyproject.toml", "r") as f:
            data = toml.load(f)
        self.assertTrue(data["project"]["version"] == vtcoerce.__version__)


if __name__ == "__main__":
    unittest.main()
