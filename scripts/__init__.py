import subprocess
import shutil
import os
import sys

POSTGRES_CONTAINER = "rolelease-postgres"


def run_unit_tests():
    """Run unit tests in rolelease/tests."""
    print("Running unit tests...")
    result = subprocess.run([sys.executable, "-m", "pytest", "rolelease/tests"], check=False)
    sys.exit(result.returncode)


def run_integration_tests():
    """Run integration tests in tests/ against DATABASE_URL."""
    print("Running integration tests...")
    result = subprocess.run([sys.executable, "-m", "pytest", "tests"], check=False)
    sys.exit(result.returncode)


def run_all_tests():
    """Run all tests (unit + integration)."""
    print("Running all tests...")
    result = subprocess.run([sys.executable, "-m", "pytest"], check=False)
    sys.exit(result.returncode)


def clean_project():
    """Remove unnecessary folders like venv, __pycache__, and .pytest_cache."""
    folders_to_remove = ["venv", ".pytest_cache"]

    for root, dirs, _ in os.walk("."):
        if "__pycache__" in dirs:
            folders_to_remove.append(os.path.join(root, "__pycache__"))

    print("Cleaning up project...")
    for folder in set(folders_to_remove):
        if os.path.exists(folder):
            try:
                shutil.rmtree(folder)
                print(f"Removed: {folder}")
            except OSError as e:
                print(f"Failed to remove {folder}: {e}")

    print("Cleanup complete.")


def setup_tests():
    """Start the PostgreSQL container the integration tests expect on port 5433."""
    print("Starting PostgreSQL for integration tests...")
    result = subprocess.run(
        [
            "docker", "run", "-d", "--rm",
            "--name", POSTGRES_CONTAINER,
            "-e", "POSTGRES_PASSWORD=password",
            "-e", "POSTGRES_DB=rolelease_test",
            "-p", "5433:5432",
            "postgres:16",
        ],
        check=False,
    )
    if result.returncode != 0:
        sys.exit(result.returncode)

    print("Test setup complete.")


def teardown_tests():
    """Stop the integration test PostgreSQL container."""
    result = subprocess.run(["docker", "stop", POSTGRES_CONTAINER], check=False)
    sys.exit(result.returncode)
