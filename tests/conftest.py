import matplotlib

matplotlib.use("Agg")

MARKERS = (
    "variables",
    "tensor",
    "factor",
    "graph",
    "inference",
    "parametric",
    "reduce",
    "training",
    "data",
    "config",
    "visualization",
    "slow",
)


def pytest_configure(config):
    for marker in MARKERS:
        config.addinivalue_line("markers", marker)
