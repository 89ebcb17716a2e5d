import json
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Provisioner settings with environment variable support."""

    # Deployment identity
    PROJECT_NAME: str = Field(
        default="sonarqube",
        description="Prefix used for every provisioned resource name",
    )
    ENVIRONMENT: str = Field(default="dev", description="Environment tag")
    AWS_REGION: str = "us-east-1"

    @field_validator("PROJECT_NAME")
    @classmethod
    def validate_project_name(cls, v: str) -> str:
        """Validate the project prefix fits AWS naming limits."""
        import re

        # Load balancer and target group names are capped at 32 characters
        if not re.fullmatch(r"[a-z][a-z0-9-]{1,15}", v):
            raise ValueError(
                "PROJECT_NAME must start with a lowercase letter, contain only "
                "lowercase letters, digits and hyphens, and be 2-16 characters long"
            )
        return v

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        import re

        if not re.fullmatch(r"[a-z][a-z0-9]{0,9}", v):
            raise ValueError(
                "ENVIRONMENT must be 1-10 lowercase alphanumeric characters"
            )
        return v

    @field_validator("AWS_REGION")
    @classmethod
    def validate_aws_region(cls, v: str) -> str:
        import re

        if not re.fullmatch(r"[a-z]{2}(-gov)?-[a-z]+-\d", v):
            raise ValueError(f"AWS_REGION '{v}' is not a valid region identifier")
        return v

    # Database Configuration
    DB_USERNAME: str = "sonarqube"
    DB_PASSWORD: Optional[str] = Field(
        default=None,
        repr=False,
        description="Pre-supplied database password (generated when unset)",
    )

    @field_validator("DB_PASSWORD")
    @classmethod
    def validate_db_password(cls, v: Optional[str]) -> Optional[str]:
        """Reject passwords Amazon RDS would refuse for the master user."""
        from provisioner.services.credentials import (
            MAX_PASSWORD_LENGTH,
            MIN_PASSWORD_LENGTH,
            RDS_EXCLUDED_CHARACTERS,
        )

        if v is None:
            return v
        if not MIN_PASSWORD_LENGTH <= len(v) <= MAX_PASSWORD_LENGTH:
            raise ValueError(
                f"DB_PASSWORD must be {MIN_PASSWORD_LENGTH}-{MAX_PASSWORD_LENGTH} characters long"
            )
        if any(char in RDS_EXCLUDED_CHARACTERS for char in v):
            raise ValueError("DB_PASSWORD must not contain '/', '@', '\"' or spaces")
        return v

    DB_INSTANCE_CLASS: str = "db.t3.micro"
    DB_ALLOCATED_STORAGE: int = Field(default=20, ge=20, le=1000)

    # Container Configuration
    SONARQUBE_IMAGE: str = "sonarqube:community"
    TASK_CPU: int = 1024
    TASK_MEMORY: int = 4096
    DESIRED_COUNT: int = Field(default=1, ge=0)

    # Network Configuration
    VPC_CIDR: str = "10.0.0.0/16"

    @field_validator("VPC_CIDR")
    @classmethod
    def validate_vpc_cidr(cls, v: str) -> str:
        import ipaddress

        network = ipaddress.ip_network(v, strict=True)
        if network.prefixlen > 20:
            raise ValueError("VPC_CIDR must be /20 or larger to fit four /24 subnets")
        return v

    # State Configuration
    STATE_PATH: str = ".sonar-provisioner/state.json"

    # External tools
    AWS_CLI: str = "aws"
    DOCKER_CLI: str = "docker"
    REQUIRED_TOOLS: Annotated[List[str], NoDecode] = ["aws", "docker"]

    @field_validator("REQUIRED_TOOLS", mode="before")
    @classmethod
    def parse_required_tools(cls, v):
        """Parse REQUIRED_TOOLS from comma-separated string or JSON array."""
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [x.strip() for x in v.split(",") if x.strip()]
        return v

    # Logging Configuration
    LOG_LEVEL: str = "WARNING"
    LOG_FORMAT: str = "text"  # json or text

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def name_prefix(self) -> str:
        """Prefix shared by every resource name of this deployment."""
        return f"{self.PROJECT_NAME}-{self.ENVIRONMENT}"

    @property
    def is_production(self) -> bool:
        """Check if the deployment targets production."""
        return self.ENVIRONMENT.lower() in ["production", "prod"]

