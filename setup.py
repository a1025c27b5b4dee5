from setuptools import find_packages, setup

setup(
    name="jaxsam",
    version="0.0",
    description="Incremental square-root smoothing for SLAM, in Jax",
    license="BSD",
    packages=find_packages(include=["jaxsam", "jaxsam.*"]),
    package_data={"jaxsam": ["py.typed"]},
    python_requires=">=3.10",
    install_requires=[
        "jax>=0.4.1",
        "jaxlib",
        "jaxlie>=1.3.0",
        "jax_dataclasses>=1.5.0",
        "numpy",
        "scipy",
        "overrides",
        "termcolor",
        "tqdm",
    ],
    extras_require={
        "testing": [
            "pytest",
            "pytest-cov",
        ],
        "type-checking": [
            "mypy",
            "types-termcolor",
        ],
    },
)
