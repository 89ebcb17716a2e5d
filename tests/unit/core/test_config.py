"""
Unit tests for the configuration module.

Tests Settings validation and environment handling.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from provisioner.core.config import Settings


def make_settings(**env):
    with patch.dict(os.environ, {k: str(v) for k, v in env.items()}, clear=False):
        return Settings(_env_file=None)


class TestSettingsDefaults:
    """Tests for default values."""

    @pytest.mark.unit
    def test_defaults(self):
        """Test the documented defaults when nothing is set."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.AWS_REGION == "us-east-1"
        assert settings.PROJECT_NAME == "sonarqube"
        assert settings.ENVIRONMENT == "dev"
        assert settings.DB_PASSWORD is None
        assert settings.DB_INSTANCE_CLASS == "db.t3.micro"
        assert settings.REQUIRED_TOOLS == ["aws", "docker"]
        assert settings.name_prefix == "sonarqube-dev"

    @pytest.mark.unit
    def test_db_password_not_in_repr(self):
        """Test that a supplied password never shows up in repr."""
        settings = make_settings(DB_PASSWORD="Very-Secret-123")
        assert settings.DB_PASSWORD == "Very-Secret-123"
        assert "Very-Secret-123" not in repr(settings)


class TestSettingsValidation:
    """Tests for field validators."""

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["Sonar", "1sonar", "s", "sonar_qube", "a" * 17])
    def test_invalid_project_name(self, value):
        with pytest.raises(ValidationError):
            make_settings(PROJECT_NAME=value)

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["us-east-1", "eu-west-3", "us-gov-west-1", "ap-southeast-2"])
    def test_valid_regions(self, value):
        assert make_settings(AWS_REGION=value).AWS_REGION == value

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["us-east", "US-EAST-1", "useast1"])
    def test_invalid_regions(self, value):
        with pytest.raises(ValidationError):
            make_settings(AWS_REGION=value)

    @pytest.mark.unit
    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            make_settings(ENVIRONMENT="Production-Env")

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["10.0.0.0/24", "10.0.0.1/16", "not-a-cidr"])
    def test_invalid_vpc_cidr(self, value):
        with pytest.raises(ValidationError):
            make_settings(VPC_CIDR=value)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value", ["has/slash1", "user@host1", 'quote"d12', "with space1", "short1", "x" * 129]
    )
    def test_invalid_db_password(self, value):
        """Test that passwords RDS would refuse are rejected up front."""
        with pytest.raises(ValidationError) as exc_info:
            make_settings(DB_PASSWORD=value)
        assert exc_info.value.errors()[0]["loc"] == ("DB_PASSWORD",)

    @pytest.mark.unit
    def test_valid_db_password(self):
        assert make_settings(DB_PASSWORD="Ok-Pass_123!").DB_PASSWORD == "Ok-Pass_123!"

    @pytest.mark.unit
    def test_required_tools_comma_separated(self):
        """Test that REQUIRED_TOOLS accepts a comma-separated list."""
        settings = make_settings(REQUIRED_TOOLS="aws, docker,jq")
        assert settings.REQUIRED_TOOLS == ["aws", "docker", "jq"]

    @pytest.mark.unit
    def test_allocated_storage_minimum(self):
        with pytest.raises(ValidationError):
            make_settings(DB_ALLOCATED_STORAGE=10)


class TestEnvironmentDetection:
    """Tests for environment detection properties."""

    @pytest.mark.unit
    def test_is_production(self):
        assert make_settings(ENVIRONMENT="prod").is_production
        assert not make_settings(ENVIRONMENT="dev").is_production
