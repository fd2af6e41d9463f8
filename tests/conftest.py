import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run tests that invoke a real minizinc installation",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --integration option to run against minizinc")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch):
    # A developer's SOLVEGATE_CONFIG must not leak into tests.
    monkeypatch.delenv("SOLVEGATE_CONFIG", raising=False)
