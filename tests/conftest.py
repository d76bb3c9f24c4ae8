"""
Pytest configuration and fixtures for historize tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
import shutil
from typing import Generator

import pytest

from historize.core.config import EntityConfigBuilder
from historize.core.models import EntityConfig
from historize.warehouse import InMemoryTableStore


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers or a JVM"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# SPARK FIXTURES
# =======================

@pytest.fixture(scope="session")
def spark_session():
    """
    Create a Spark session for testing with local mode

    Skipped when no Java runtime is available.

    Yields:
        SparkSession configured for local testing
    """
    if shutil.which("java") is None and not os.getenv("JAVA_HOME"):
        pytest.skip("Spark tests need a Java runtime")

    from pyspark.sql import SparkSession

    spark = (
        SparkSession.builder
        .appName("historize-test")
        .master("local[2]")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.driver.memory", "1g")
        .config("spark.ui.enabled", "false")  # Disable UI for tests
        .getOrCreate()
    )

    # Set log level to WARN to reduce test output noise
    spark.sparkContext.setLogLevel("WARN")

    yield spark

    spark.stop()


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_datawarehouse",
    ) as postgres:
        yield postgres


@pytest.fixture(scope="function")
def db_pool(postgres_container) -> Generator:
    """
    Provide an open connection pool on the test container

    Yields:
        DatabaseConnectionPool
    """
    from historize.warehouse.connection import DatabaseConnectionPool

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_datawarehouse",
        user="test_pipeline",
        password="test_password",
    )
    pool.open()
    yield pool
    pool.close()


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_data_dir() -> str:
    """
    Get path to test data fixtures directory

    Returns:
        Path to tests/fixtures directory
    """
    return os.path.join(os.path.dirname(__file__), "fixtures")


@pytest.fixture(scope="session")
def entities_yaml() -> str:
    """Path to the project's entity configuration"""
    return os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "entities.yaml")


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session", autouse=True)
def test_env_vars():
    """
    Set test environment variables

    This fixture loads test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=False)


@pytest.fixture
def bookings_config() -> EntityConfig:
    """Current-state bookings entity with the amount derivations"""
    return (
        EntityConfigBuilder("silver_bookings")
        .keyed_by("BOOKING_ID")
        .changed_at("CREATED_AT")
        .with_columns(
            "BOOKING_ID", "NIGHTS_BOOKED", "BOOKING_AMOUNT", "CLEANING_FEE",
            "SERVICE_FEE", "BOOKING_STATUS", "CREATED_AT",
            NIGHTS_BOOKED="int", BOOKING_AMOUNT="decimal",
            CLEANING_FEE="decimal", SERVICE_FEE="decimal",
        )
        .add_multiply("TOTAL_BOOKING_AMOUNT", "NIGHTS_BOOKED", "BOOKING_AMOUNT", precision=2)
        .add_sum("TOTAL_AMOUNT", "TOTAL_BOOKING_AMOUNT", "CLEANING_FEE", "SERVICE_FEE", precision=2)
        .set(retry={"max_attempts": 3, "base_delay": 0.5, "max_delay": 30})
        .build()
    )


@pytest.fixture
def hosts_dim_config() -> EntityConfig:
    """Historized hosts entity using the check strategy"""
    return (
        EntityConfigBuilder("dim_hosts")
        .keyed_by("HOST_ID")
        .changed_at("CREATED_AT")
        .with_columns("HOST_ID", "HOST_NAME", "IS_SUPERHOST", "CREATED_AT", IS_SUPERHOST="bool")
        .historized(strategy="check", tracked=["HOST_NAME", "IS_SUPERHOST"])
        .build()
    )


@pytest.fixture
def memory_store() -> InMemoryTableStore:
    """Fresh in-memory table store"""
    return InMemoryTableStore()
